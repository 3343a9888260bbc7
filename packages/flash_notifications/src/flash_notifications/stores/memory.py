from __future__ import annotations

from typing import TYPE_CHECKING

from .base import KeyValueStore

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class MemoryKeyValueStore(KeyValueStore):
    """
    In-memory key-value store implementation.

    This store keeps all records in a Python dictionary. It is not persistent
    and data will be lost when the application stops. Useful for testing
    or for hosts that provide no durable storage.

    Examples:
        >>> store = MemoryKeyValueStore()
        >>> await store.put("7", b'{"id": 7}')
        >>> await store.get("7")
        b'{"id": 7}'
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        """
        Retrieves a value by key.

        Args:
            key: The record key.

        Returns:
            The stored bytes if found, otherwise None.
        """
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        """
        Stores a value.

        Args:
            key: The record key.
            value: Raw bytes to store.

        Raises:
            TypeError: If value is not bytes.
        """
        if not isinstance(value, (bytes, bytearray)):
            msg = f"Expected bytes for '{key}', got {type(value).__name__}"
            raise TypeError(msg)
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        """
        Removes a key if present.

        Args:
            key: The record key.
        """
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        """
        Returns all stored keys.

        Returns:
            A list containing every key in the store.
        """
        return list(self._data)

    async def write(
        self,
        puts: Mapping[str, bytes],
        deletes: Iterable[str] = (),
    ) -> None:
        """
        Applies puts and deletes as one batch.

        The batch is validated before anything is changed, so a bad value
        leaves the store untouched.

        Raises:
            TypeError: If any value is not bytes.
        """
        for key, value in puts.items():
            if not isinstance(value, (bytes, bytearray)):
                msg = f"Expected bytes for '{key}', got {type(value).__name__}"
                raise TypeError(msg)

        staged = dict(self._data)
        for key in deletes:
            staged.pop(key, None)
        staged.update({key: bytes(value) for key, value in puts.items()})
        self._data = staged
