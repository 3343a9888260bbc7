from __future__ import annotations

from typing import TYPE_CHECKING

from .base import KeyValueStore
from .memory import MemoryKeyValueStore

if TYPE_CHECKING:
    from flash_notifications.config import NotificationSettings


def create_store(settings: NotificationSettings) -> KeyValueStore:
    """
    Build the store configured by ``DATABASE_URL``.

    Falls back to the in-memory store when no database is configured.
    """
    if not settings.DATABASE_URL:
        return MemoryKeyValueStore()

    from sqlalchemy.ext.asyncio import create_async_engine

    from .sql_alchemy import SQLAlchemyKeyValueStore

    return SQLAlchemyKeyValueStore(create_async_engine(settings.DATABASE_URL))


__all__ = ["KeyValueStore", "MemoryKeyValueStore", "create_store"]
