"""
warmcache: tiered client-side caching and cache warming.

Components:
- cache.store.TieredStore: key/value entries with TTL, schema versions, compression
- interceptor.RequestInterceptor: cache-first / network-first request handling
- warming.WarmingScheduler: idle-gated, concurrency-limited cache population
- behavior.BehaviorPredictor: navigation tracking and next-route prediction
- monitoring.MonitoringFacade: read-only counters across all of the above
"""

__version__ = "0.1.0"
