"""Tests for the local key/value storage."""

import pytest

from tonpocket.storage.repository import StorageRepository


class TestStoredValues:
    """Tests for stored value operations."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, storage_repo: StorageRepository, db_session):
        """Test storing a value."""
        stored = await storage_repo.set_value("tonconnect_sessions", "{}", description="sessions")
        await db_session.commit()

        assert stored.key == "tonconnect_sessions"
        assert await storage_repo.get_value("tonconnect_sessions") == "{}"

    @pytest.mark.asyncio
    async def test_missing_value(self, storage_repo: StorageRepository):
        """Test reading a key that was never written."""
        assert await storage_repo.get_value("nope") is None

    @pytest.mark.asyncio
    async def test_replace_value(self, storage_repo: StorageRepository, db_session):
        """Test overwriting keeps one row and the old description."""
        await storage_repo.set_value("k", "1", description="first")
        await db_session.flush()

        stored = await storage_repo.set_value("k", "2")
        await db_session.commit()

        assert stored.value == "2"
        assert stored.description == "first"
        assert await storage_repo.list_keys() == ["k"]

    @pytest.mark.asyncio
    async def test_delete_value(self, storage_repo: StorageRepository, db_session):
        """Test deleting returns whether the key existed."""
        await storage_repo.set_value("k", "1")
        await db_session.commit()

        assert await storage_repo.delete_value("k") is True
        assert await storage_repo.delete_value("k") is False
        assert await storage_repo.get_value("k") is None

    @pytest.mark.asyncio
    async def test_list_keys_sorted(self, storage_repo: StorageRepository):
        """Test keys come back in order."""
        for key in ("b", "a", "c"):
            await storage_repo.set_value(key, key)

        assert await storage_repo.list_keys() == ["a", "b", "c"]
