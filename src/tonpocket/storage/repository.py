"""Repository for local key/value state."""

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tonpocket.storage.models import StoredValue


class StorageRepository:
    """Key/value operations on the local database."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_value(self, key: str) -> Optional[str]:
        """Get a stored value."""
        stmt = select(StoredValue).where(StoredValue.key == key)
        result = await self.session.execute(stmt)
        stored = result.scalar_one_or_none()
        return stored.value if stored else None

    async def set_value(self, key: str, value: str, description: Optional[str] = None) -> StoredValue:
        """Create or replace a stored value."""
        stmt = select(StoredValue).where(StoredValue.key == key)
        result = await self.session.execute(stmt)
        stored = result.scalar_one_or_none()

        if stored is None:
            stored = StoredValue(key=key, value=value, description=description)
            self.session.add(stored)
        else:
            stored.value = value
            if description:
                stored.description = description

        await self.session.flush()
        return stored

    async def delete_value(self, key: str) -> bool:
        """Delete a stored value. Returns True if it existed."""
        result = await self.session.execute(delete(StoredValue).where(StoredValue.key == key))
        await self.session.flush()
        return bool(result.rowcount)

    async def list_keys(self) -> list[str]:
        """All stored keys, sorted."""
        result = await self.session.execute(select(StoredValue.key).order_by(StoredValue.key))
        return list(result.scalars().all())
