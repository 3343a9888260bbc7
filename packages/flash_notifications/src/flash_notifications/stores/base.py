from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class KeyValueStore(ABC):
    """
    Interface for notification persistence.

    The store is the source of truth across restarts: the manager's registry
    is rebuilt from it on cold start. Any backend (Memory, SQL, a platform
    preferences file) must implement these methods.
    """

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open files). Optional."""
        return None

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Returns the value stored under key, or None if absent."""
        ...

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Stores value under key, replacing any previous value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Removes key. Removing an absent key is not an error."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """Returns every key currently stored."""
        ...

    @abstractmethod
    async def write(
        self,
        puts: Mapping[str, bytes],
        deletes: Iterable[str] = (),
    ) -> None:
        """
        Applies a batch of puts and deletes atomically.

        Either every change in the batch is visible afterwards or none is.
        """
        ...

    async def get_many(self, keys: Iterable[str]) -> dict[str, bytes | None]:
        """Convenience lookup of several keys."""
        return {key: await self.get(key) for key in keys}
