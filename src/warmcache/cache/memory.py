"""
In-process session medium.

Holds entries for the lifetime of the runtime only; close() wipes it, which
is how session retention ends.
"""

from __future__ import annotations

from warmcache.cache.base import StorageMedium
from warmcache.exceptions import StorageError


class MemoryMedium(StorageMedium):
    """Dict-backed medium with an optional byte quota.

    Insertion order of the underlying dict gives the storage order; a write
    to an existing key pops it first so it moves to the newest position.
    """

    def __init__(self, quota_bytes: int | None = None, name: str = "session") -> None:
        self.name = name
        self.quota_bytes = quota_bytes
        self._items: dict[str, bytes] = {}
        self._used = 0

    @property
    def used_bytes(self) -> int:
        return self._used

    async def get_item(self, key: str) -> bytes | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: bytes) -> None:
        previous = self._items.get(key)
        projected = self._used - (len(previous) if previous is not None else 0) + len(value)
        if self.quota_bytes is not None and projected > self.quota_bytes:
            raise StorageError(
                "Storage quota exceeded",
                context={"key": key, "operation": "set", "quota": self.quota_bytes},
            )
        if previous is not None:
            del self._items[key]
        self._items[key] = value
        self._used = projected

    async def remove_item(self, key: str) -> None:
        value = self._items.pop(key, None)
        if value is not None:
            self._used -= len(value)

    async def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._items if key.startswith(prefix)]

    async def close(self) -> None:
        """Wipe all entries (end of session)."""
        self._items.clear()
        self._used = 0
