"""
Base classes for storage media.

A storage medium is a flat key -> bytes map with no knowledge of TTL,
versions or compression; TieredStore layers those on top. Two retention
classes map onto two media: a durable one (SQLite) and a session one
(in-process, wiped at teardown).

Media contract:
- Keys are returned in insertion order.
- set_item on an existing key removes and re-appends it (last write wins).
- remove_item on a missing key is a no-op.
- Failures are raised as StorageError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class StorageMedium(ABC):
    """Abstract interface for key/bytes storage media."""

    name: str = "medium"

    async def open(self) -> None:
        """Acquire underlying resources. Default is a no-op."""
        return None

    async def close(self) -> None:
        """Release underlying resources. Default is a no-op."""
        return None

    @abstractmethod
    async def get_item(self, key: str) -> bytes | None:
        """Get raw bytes stored under key, or None."""
        ...

    @abstractmethod
    async def set_item(self, key: str, value: bytes) -> None:
        """Store raw bytes under key, replacing any previous value."""
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove key if present."""
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with prefix, oldest write first."""
        ...

    async def clear(self, prefix: str = "") -> int:
        """Remove every key starting with prefix.

        Returns:
            Number of keys removed.
        """
        keys = await self.keys(prefix)
        for key in keys:
            await self.remove_item(key)
        return len(keys)
