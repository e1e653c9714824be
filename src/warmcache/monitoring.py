"""
MonitoringFacade: read-only aggregation of cache counters.

Combines TieredStore counters, interceptor per-class counters and
scheduler stats into one JSON-serializable snapshot. Everything here is
synchronous and side-effect free.
"""

from __future__ import annotations

from typing import Any

import orjson

from warmcache.cache.store import TieredStore
from warmcache.interceptor.interceptor import RequestInterceptor
from warmcache.types import Clock, now_ms
from warmcache.warming.scheduler import WarmingScheduler


class MonitoringFacade:
    """Aggregates hit/miss/eviction counters across components."""

    def __init__(
        self,
        store: TieredStore,
        interceptor: RequestInterceptor | None = None,
        scheduler: WarmingScheduler | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.store = store
        self.interceptor = interceptor
        self.scheduler = scheduler
        self.clock = clock

    def snapshot(self) -> dict[str, Any]:
        """Current counters as a plain dict.

        Top-level ``hits``/``misses``/``evictions`` sum the application store
        and the interceptor; ``byClass`` holds one entry per cache class.
        """
        store_metrics = self.store.metrics()
        hits = store_metrics["hits"]
        misses = store_metrics["misses"]
        evictions = store_metrics["evictions"]
        by_class: dict[str, dict[str, int]] = dict(store_metrics["byClass"])

        interceptor_section: dict[str, Any] | None = None
        if self.interceptor is not None:
            counters = self.interceptor.counters()
            hits += counters.hits
            misses += counters.misses
            evictions += counters.evictions
            by_class.update(self.interceptor.counters_by_class())
            interceptor_section = {
                "version": self.interceptor.version_tag,
                "state": self.interceptor.state.value,
                **counters.to_dict(),
            }

        snapshot: dict[str, Any] = {
            "hits": hits,
            "misses": misses,
            "evictions": evictions,
            "hitRate": round(hits / (hits + misses), 4) if hits + misses else 0.0,
            "totalSize": store_metrics["totalSize"],
            "byClass": by_class,
            "timestamp": self.clock(),
        }
        if interceptor_section is not None:
            snapshot["interceptor"] = interceptor_section
        if self.scheduler is not None:
            snapshot["warming"] = self.scheduler.stats().to_dict()
        return snapshot

    def export_json(self, indent: bool = True) -> str:
        """Serialize the snapshot for external reporting."""
        option = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if indent else orjson.OPT_SORT_KEYS
        return orjson.dumps(self.snapshot(), option=option).decode("utf-8")
