"""
Static TieredStore class configuration.

Bumping a class's schema_version here invalidates all of its existing
entries on their next read; there is no other deploy-time migration.
"""

from __future__ import annotations

from warmcache.logging import get_logger
from warmcache.types import CacheClass, Retention, StoreClassName

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

DEFAULT_STORE_CLASS = StoreClassName.LISTINGS

CACHE_CLASSES: dict[StoreClassName, CacheClass] = {
    StoreClassName.LISTINGS: CacheClass(
        name=StoreClassName.LISTINGS,
        ttl_ms=5 * MINUTE_MS,
        compress=True,
        retention=Retention.DURABLE,
        schema_version="1.1",
    ),
    # Small payloads, stored uncompressed
    StoreClassName.FILTERS: CacheClass(
        name=StoreClassName.FILTERS,
        ttl_ms=30 * MINUTE_MS,
        compress=False,
        retention=Retention.DURABLE,
        schema_version="2.0",
    ),
    StoreClassName.REFERENCE: CacheClass(
        name=StoreClassName.REFERENCE,
        ttl_ms=DAY_MS,
        compress=True,
        retention=Retention.DURABLE,
        schema_version="1.0",
    ),
    StoreClassName.RANGES: CacheClass(
        name=StoreClassName.RANGES,
        ttl_ms=10 * MINUTE_MS,
        compress=False,
        retention=Retention.SESSION,
        schema_version="1.0",
        max_entries=50,
    ),
    StoreClassName.BEHAVIOR: CacheClass(
        name=StoreClassName.BEHAVIOR,
        ttl_ms=7 * DAY_MS,
        compress=True,
        retention=Retention.DURABLE,
        schema_version="1.0",
    ),
}


def get_cache_class(name: StoreClassName) -> CacheClass:
    """Get the configuration for a class identifier."""
    return CACHE_CLASSES[name]


def resolve_store_class(name: str) -> CacheClass:
    """Resolve a class by its string name.

    Unknown names fall back to the listings class with a warning.
    """
    try:
        return CACHE_CLASSES[StoreClassName(name)]
    except ValueError:
        logger.warning(
            "Unknown cache class, falling back",
            requested=name,
            fallback=DEFAULT_STORE_CLASS.value,
        )
        return CACHE_CLASSES[DEFAULT_STORE_CLASS]
