"""
Cache package for entry persistence.

This package provides:
- Storage media (base.py, memory.py, kv_cache.py): raw key/bytes backends
- Entry codec (codec.py): envelope serialization and compression
- Class registry (classes.py): static TieredStore class configuration
- TieredStore (store.py): TTL, schema-version and capacity aware cache
"""

from warmcache.cache.base import StorageMedium
from warmcache.cache.classes import CACHE_CLASSES, get_cache_class, resolve_store_class
from warmcache.cache.kv_cache import SqliteMedium
from warmcache.cache.memory import MemoryMedium
from warmcache.cache.store import TieredStore

__all__ = [
    "CACHE_CLASSES",
    "MemoryMedium",
    "SqliteMedium",
    "StorageMedium",
    "TieredStore",
    "get_cache_class",
    "resolve_store_class",
]
