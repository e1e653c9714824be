"""
TieredStore: application-level key/value cache.

Entries are written to the durable or the session medium according to the
class's retention. Every read validates schema version and TTL; invalid,
expired or undecodable entries are deleted and reported as a miss (lazy
invalidation). Storage and codec failures never reach the caller; they are
logged and degrade to a miss.

Storage keys: "{prefix}{className}-{key}".
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from warmcache.cache.base import StorageMedium
from warmcache.cache.classes import CACHE_CLASSES
from warmcache.cache.codec import CodecError, decode_entry, encode_entry
from warmcache.exceptions import SchemaMismatchError, StorageError
from warmcache.logging import get_logger
from warmcache.types import (
    CacheClass,
    CacheCounters,
    CacheEntry,
    Clock,
    Retention,
    StoreClassName,
    now_ms,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoreStats:
    """Snapshot of what is physically stored."""

    total_entries: int = 0
    total_size: int = 0
    by_class: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "totalSize": self.total_size,
            "byClass": dict(self.by_class),
        }


class TieredStore:
    """Tiered key/value cache with TTL, schema versions and compression.

    One instance is constructed by the application root and shared by
    reference; it holds no global state.
    """

    def __init__(
        self,
        durable: StorageMedium,
        session: StorageMedium,
        prefix: str = "warmcache-",
        clock: Clock = now_ms,
        classes: Mapping[StoreClassName, CacheClass] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            durable: Medium for durable-retention classes.
            session: Medium for session-retention classes.
            prefix: Namespace prefix for every storage key.
            clock: Millisecond clock used for stamping and TTL checks.
            classes: Current class configuration used by cleanup().
        """
        self.durable = durable
        self.session = session
        self.prefix = prefix
        self.clock = clock
        self.classes: dict[StoreClassName, CacheClass] = dict(classes or CACHE_CLASSES)
        self._counters: dict[str, CacheCounters] = defaultdict(CacheCounters)
        self._sizes: dict[str, int] = {}

    # Key helpers

    def storage_key(self, key: str, cache_class: CacheClass) -> str:
        """Build the namespaced storage key for an entry."""
        return f"{self.prefix}{cache_class.name.value}-{key}"

    def _class_prefix(self, cache_class: CacheClass) -> str:
        return f"{self.prefix}{cache_class.name.value}-"

    def _medium(self, cache_class: CacheClass) -> StorageMedium:
        return self.durable if cache_class.retention == Retention.DURABLE else self.session

    def _split_storage_key(self, storage_key: str) -> tuple[CacheClass, str] | None:
        """Map a storage key back to its class and logical key."""
        rest = storage_key[len(self.prefix):]
        for name, cache_class in self.classes.items():
            marker = f"{name.value}-"
            if rest.startswith(marker):
                return cache_class, rest[len(marker):]
        return None

    # Public contract

    async def set(self, key: str, value: Any, cache_class: CacheClass) -> bool:
        """Store value under key, fully replacing any previous entry.

        Args:
            key: Logical key inside the class.
            value: JSON-serializable payload.
            cache_class: Class deciding TTL, version, compression and medium.

        Returns:
            True if the entry was written, False if it was dropped.
        """
        counters = self._counters[cache_class.name.value]
        storage_key = self.storage_key(key, cache_class)
        entry = CacheEntry(
            key=key,
            data=value,
            stored_at=self.clock(),
            ttl_ms=cache_class.ttl_ms,
            schema_version=cache_class.schema_version,
            compressed=cache_class.compress,
        )

        try:
            raw = encode_entry(entry)
        except TypeError as e:
            counters.errors += 1
            logger.warning("Cache set failed: value not serializable", key=storage_key, error=str(e))
            return False

        medium = self._medium(cache_class)
        try:
            await medium.set_item(storage_key, raw)
        except StorageError as e:
            counters.errors += 1
            logger.warning("Cache set failed", key=storage_key, error=str(e))
            return False

        counters.sets += 1
        self._sizes[storage_key] = len(raw)
        logger.debug(
            "Cache set",
            key=storage_key,
            compressed=cache_class.compress,
            size=len(raw),
        )

        if cache_class.max_entries is not None:
            await self._enforce_capacity(cache_class)
        return True

    async def get(self, key: str, cache_class: CacheClass) -> Any | None:
        """Get a valid value, or None.

        Expired, version-mismatched or corrupt entries are deleted and
        reported as a miss.
        """
        counters = self._counters[cache_class.name.value]
        storage_key = self.storage_key(key, cache_class)
        medium = self._medium(cache_class)

        try:
            raw = await medium.get_item(storage_key)
        except StorageError as e:
            counters.errors += 1
            counters.misses += 1
            logger.warning("Cache get failed", key=storage_key, error=str(e))
            return None

        if raw is None:
            counters.misses += 1
            self._sizes.pop(storage_key, None)
            return None

        self._sizes[storage_key] = len(raw)
        reason: str | None
        try:
            entry = decode_entry(key, raw)
            self._check_schema(entry, cache_class)
            reason = "expired" if entry.is_expired(self.clock()) else None
        except (CodecError, SchemaMismatchError) as e:
            reason = str(e)

        if reason is not None:
            counters.misses += 1
            counters.evictions += 1
            logger.debug("Cache entry invalidated", key=storage_key, reason=reason)
            await self._remove(medium, storage_key)
            return None

        counters.hits += 1
        logger.debug("Cache hit", key=storage_key)
        return entry.data

    async def delete(self, key: str, cache_class: CacheClass) -> None:
        """Remove an entry if present."""
        await self._remove(self._medium(cache_class), self.storage_key(key, cache_class))

    async def cleanup(self) -> int:
        """Delete every entry that is expired, stale or undecodable.

        Returns:
            Number of entries removed.
        """
        removed = 0
        now = self.clock()

        for medium in (self.durable, self.session):
            try:
                keys = await medium.keys(self.prefix)
            except StorageError as e:
                logger.warning("Cache cleanup failed", medium=medium.name, error=str(e))
                continue

            for storage_key in keys:
                if not await self._is_keepable(medium, storage_key, now):
                    await self._remove(medium, storage_key)
                    removed += 1

        if removed:
            logger.info("Cache cleanup removed entries", removed=removed)
        return removed

    async def stats(self) -> StoreStats:
        """Count stored entries and their serialized size, grouped by class."""
        total_entries = 0
        total_size = 0
        by_class: dict[str, int] = {}

        for medium in (self.durable, self.session):
            try:
                keys = await medium.keys(self.prefix)
                for storage_key in keys:
                    raw = await medium.get_item(storage_key)
                    if raw is None:
                        continue
                    total_entries += 1
                    total_size += len(raw)
                    split = self._split_storage_key(storage_key)
                    class_name = split[0].name.value if split else "unknown"
                    by_class[class_name] = by_class.get(class_name, 0) + 1
            except StorageError as e:
                logger.warning("Cache stats failed", medium=medium.name, error=str(e))

        return StoreStats(total_entries=total_entries, total_size=total_size, by_class=by_class)

    async def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Delete every entry whose storage key matches pattern.

        Returns:
            Number of entries removed.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        removed = 0

        for medium in (self.durable, self.session):
            try:
                keys = await medium.keys(self.prefix)
            except StorageError as e:
                logger.warning("Cache invalidation failed", medium=medium.name, error=str(e))
                continue
            for storage_key in keys:
                if regex.search(storage_key):
                    await self._remove(medium, storage_key)
                    removed += 1

        if removed:
            logger.info("Cache invalidated", pattern=regex.pattern, removed=removed)
        return removed

    async def clear_all(self) -> int:
        """Delete every prefixed entry from both media."""
        removed = 0
        for medium in (self.durable, self.session):
            try:
                removed += await medium.clear(self.prefix)
            except StorageError as e:
                logger.warning("Cache clear failed", medium=medium.name, error=str(e))
        self._sizes.clear()
        return removed

    def metrics(self) -> dict[str, Any]:
        """Synchronous counter snapshot for monitoring."""
        total = CacheCounters()
        for counters in self._counters.values():
            total = total.merge(counters)
        return {
            "hits": total.hits,
            "misses": total.misses,
            "sets": total.sets,
            "evictions": total.evictions,
            "errors": total.errors,
            "totalSize": sum(self._sizes.values()),
            "byClass": {name: c.to_dict() for name, c in sorted(self._counters.items())},
        }

    # Internals

    def _check_schema(self, entry: CacheEntry, cache_class: CacheClass) -> None:
        if entry.schema_version != cache_class.schema_version:
            raise SchemaMismatchError(
                "Schema version mismatch",
                context={"stored": entry.schema_version, "current": cache_class.schema_version},
            )

    async def _is_keepable(self, medium: StorageMedium, storage_key: str, now: int) -> bool:
        split = self._split_storage_key(storage_key)
        if split is None:
            return False
        cache_class, key = split
        try:
            raw = await medium.get_item(storage_key)
        except StorageError as e:
            logger.warning("Cache cleanup read failed", key=storage_key, error=str(e))
            return True
        if raw is None:
            return True
        try:
            entry = decode_entry(key, raw)
        except CodecError:
            return False
        return entry.is_valid(cache_class.schema_version, now)

    async def _enforce_capacity(self, cache_class: CacheClass) -> None:
        """Evict the oldest entries (storage order) above max_entries."""
        if cache_class.max_entries is None:
            return
        medium = self._medium(cache_class)
        try:
            keys = await medium.keys(self._class_prefix(cache_class))
        except StorageError as e:
            logger.warning("Capacity check failed", cache_class=cache_class.name.value, error=str(e))
            return

        excess = len(keys) - cache_class.max_entries
        if excess <= 0:
            return

        for storage_key in keys[:excess]:
            await self._remove(medium, storage_key)
        self._counters[cache_class.name.value].evictions += excess
        logger.debug("Capacity eviction", cache_class=cache_class.name.value, evicted=excess)

    async def _remove(self, medium: StorageMedium, storage_key: str) -> None:
        try:
            await medium.remove_item(storage_key)
        except StorageError as e:
            logger.warning("Cache delete failed", key=storage_key, error=str(e))
            return
        self._sizes.pop(storage_key, None)
