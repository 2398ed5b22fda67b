"""Live record stores: pick one with SBL_STORAGE_BACKEND."""
from __future__ import annotations

from shared.config import Settings, StorageBackend, get_settings
from shared.storage.base import LiveStore, StreamNotFound
from shared.storage.memory import MemoryLiveStore

__all__ = ["LiveStore", "MemoryLiveStore", "StreamNotFound", "create_store"]


def create_store(settings: Settings | None = None) -> LiveStore:
    """Build the configured store. Call ``connect()`` before use."""
    settings = settings or get_settings()
    if settings.storage_backend == StorageBackend.SQL:
        from shared.storage.sql import SqlLiveStore
        from shared.utils.database import DatabaseManager

        return SqlLiveStore(DatabaseManager(settings), create_schema=settings.db_create_schema)
    if settings.storage_backend == StorageBackend.REDIS:
        from shared.storage.redis_store import RedisLiveStore
        from shared.utils.redis_manager import RedisManager

        return RedisLiveStore(RedisManager(settings))
    return MemoryLiveStore()
