"""Local persisted state."""

from tonpocket.storage.database import close_db, configure_engine, get_db, init_db
from tonpocket.storage.models import Base, StoredValue
from tonpocket.storage.repository import StorageRepository

__all__ = [
    "Base",
    "StorageRepository",
    "StoredValue",
    "close_db",
    "configure_engine",
    "get_db",
    "init_db",
]
