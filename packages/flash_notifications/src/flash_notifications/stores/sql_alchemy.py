"""SQLAlchemy-based key-value store implementation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, LargeBinary, String, delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .base import KeyValueStore

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class NotificationRecord(Base):
    """One persisted notification field (options blob, occurrence, fire time)."""

    __tablename__ = "flash_notification_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class SQLAlchemyKeyValueStore(KeyValueStore):
    """
    SQLAlchemy-based persistent key-value store.

    Records survive process restarts, which is what lets the manager restore
    and re-arm notifications after a reboot. It requires an asyncio-compatible
    engine (e.g., aiosqlite, asyncpg).

    Examples:
        >>> from sqlalchemy.ext.asyncio import create_async_engine
        >>> engine = create_async_engine("sqlite+aiosqlite:///notifications.db")
        >>> store = SQLAlchemyKeyValueStore(engine)
        >>> await store.initialize()  # Create tables
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self) -> None:
        """
        Creates the necessary database tables if they don't exist.

        Also initializes the session factory. This must be called before
        performing any operations.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    def _get_session(self) -> AsyncSession:
        """Helper to create a new async session."""
        if self._session_factory is not None:
            return self._session_factory()
        msg = "Store not initialized. Call initialize() first."
        raise RuntimeError(msg)

    async def get(self, key: str) -> bytes | None:
        """
        Retrieves a value by key.

        Args:
            key: The record key.

        Returns:
            The stored bytes if found, otherwise None.
        """
        async with self._get_session() as session:
            model = await session.get(NotificationRecord, key)
            return model.value if model else None

    async def put(self, key: str, value: bytes) -> None:
        """
        Inserts or replaces a value.

        Args:
            key: The record key.
            value: Raw bytes to store.
        """
        await self.write({key: value})

    async def delete(self, key: str) -> None:
        """
        Removes a key if present.

        Args:
            key: The record key.
        """
        await self.write({}, [key])

    async def keys(self) -> list[str]:
        """
        Returns all stored keys.

        Returns:
            List of every key in the table.
        """
        async with self._get_session() as session:
            result = await session.execute(select(NotificationRecord.key))
            return list(result.scalars().all())

    async def get_many(self, keys: Iterable[str]) -> dict[str, bytes | None]:
        """
        Retrieves several keys in one query.

        Args:
            keys: The record keys.

        Returns:
            Mapping of every requested key to its bytes, or None if absent.
        """
        wanted = list(keys)
        async with self._get_session() as session:
            result = await session.execute(
                select(NotificationRecord).where(NotificationRecord.key.in_(wanted))
            )
            found = {m.key: m.value for m in result.scalars().all()}
        return {key: found.get(key) for key in wanted}

    async def write(
        self,
        puts: Mapping[str, bytes],
        deletes: Iterable[str] = (),
    ) -> None:
        """
        Applies puts and deletes in a single transaction.

        Args:
            puts: Keys to insert or replace.
            deletes: Keys to remove.
        """
        removals = [key for key in deletes if key not in puts]
        async with self._get_session() as session:
            async with session.begin():
                if removals:
                    await session.execute(
                        delete(NotificationRecord).where(
                            NotificationRecord.key.in_(removals)
                        )
                    )
                for key, value in puts.items():
                    model = await session.get(NotificationRecord, key)
                    if model:
                        model.value = bytes(value)
                    else:
                        session.add(NotificationRecord(key=key, value=bytes(value)))
