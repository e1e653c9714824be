"""
RequestInterceptor: transport-level cache strategies.

Sits on the path of every outbound read, classifies it, and resolves it with
the class's strategy:

- cache-first: serve a fresh cached copy; otherwise fetch, store and trim;
  if the network fails, serve the expired copy when one exists.
- network-first: fetch and store; if the network fails, serve any cached
  copy regardless of age.

Freshness is judged from the x-cache-date header stamped at store time,
not from TieredStore TTLs. The interceptor may run concurrently with the
application's own TieredStore and WarmingScheduler; writes are last-write-
wins per URL and nothing here takes a lock.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from enum import Enum
from typing import Any

from warmcache.exceptions import ControlMessageError, NetworkError, StorageError
from warmcache.interceptor.fetcher import Fetcher
from warmcache.interceptor.messages import (
    CacheStrategy,
    CacheUrls,
    GetCacheMetrics,
    SkipWaiting,
    WarmupCache,
    parse_control_message,
)
from warmcache.interceptor.response_cache import ResponseCache, ResponseCacheStorage
from warmcache.interceptor.rules import RequestClassifier, resolve_resource_class
from warmcache.logging import get_logger, log_context
from warmcache.types import (
    CacheCounters,
    Clock,
    Request,
    ResourceClass,
    ResourceClassConfig,
    Response,
    Strategy,
    iso_to_ms,
    ms_to_iso,
    now_ms,
)

logger = get_logger(__name__)

CACHE_DATE_HEADER = "x-cache-date"
CACHE_CLASS_HEADER = "x-cache-class"

DEFAULT_PRECACHE_URLS: tuple[str, ...] = ("/", "/index.html", "/manifest.json")

SYNC_CACHE_UPDATE = "cache-update"
SYNC_CACHE_WARMUP = "cache-warmup"


class AgentState(str, Enum):
    """Lifecycle of an interceptor generation."""

    PARSED = "parsed"
    INSTALLED = "installed"  # Waiting for activation
    ACTIVE = "active"


class RequestInterceptor:
    """Applies per-class caching strategies to outbound reads."""

    def __init__(
        self,
        storage: ResponseCacheStorage,
        fetcher: Fetcher,
        classifier: RequestClassifier,
        app_name: str = "app",
        version_tag: str = "v1",
        clock: Clock = now_ms,
        precache_urls: Sequence[str] = DEFAULT_PRECACHE_URLS,
        warmup_urls: Sequence[str] = ("/",),
        critical_urls: Sequence[str] = (),
    ) -> None:
        """Initialize the interceptor.

        Args:
            storage: Named response cache storage.
            fetcher: Network fetch callable.
            classifier: Rule table evaluator.
            app_name: First component of response cache names.
            version_tag: Generation tag; caches carrying another tag are orphans.
            clock: Millisecond clock for freshness checks and stamps.
            precache_urls: URLs stored into the static cache on install.
            warmup_urls: URLs warmed by WARMUP_CACHE when none are given.
            critical_urls: API URLs refreshed by the cache-update sync tag.
        """
        self.storage = storage
        self.fetcher = fetcher
        self.classifier = classifier
        self.app_name = app_name
        self.version_tag = version_tag
        self.clock = clock
        self.precache_urls = tuple(precache_urls)
        self.warmup_urls = tuple(warmup_urls)
        self.critical_urls = tuple(critical_urls)
        self.state = AgentState.PARSED
        self._counters: dict[ResourceClass, CacheCounters] = defaultdict(CacheCounters)

    # Naming

    def cache_name(self, resource_class: ResourceClass) -> str:
        """Name of the response cache for a class in this generation."""
        return f"{self.app_name}-{resource_class.value}-{self.version_tag}"

    async def _open(self, resource_class: ResourceClass) -> ResponseCache:
        return await self.storage.open_cache(self.cache_name(resource_class))

    # Lifecycle

    async def install(self) -> None:
        """Precache static shell assets and wait for activation."""
        with log_context(component="interceptor"):
            try:
                cache = await self._open(ResourceClass.STATIC)
            except StorageError as e:
                logger.warning("Precache skipped, response cache unavailable", error=str(e))
                self.state = AgentState.INSTALLED
                return
            for url in self.precache_urls:
                try:
                    await self._fetch_and_store(
                        cache, self.classifier.absolute(url), self.classifier.config_for(ResourceClass.STATIC)
                    )
                except (NetworkError, StorageError) as e:
                    logger.warning("Precache failed", url=url, error=str(e))
            self.state = AgentState.INSTALLED
            logger.info("Interceptor installed", version=self.version_tag)

    async def activate(self) -> list[str]:
        """Delete orphaned caches from older generations and start intercepting.

        Returns:
            Names of the deleted caches.
        """
        deleted: list[str] = []
        owned_prefix = f"{self.app_name}-"
        current_suffix = f"-{self.version_tag}"

        with log_context(component="interceptor"):
            try:
                for name in await self.storage.cache_names():
                    if name.startswith(owned_prefix) and not name.endswith(current_suffix):
                        await self.storage.delete_cache(name)
                        deleted.append(name)
                        logger.info("Deleted orphaned cache", cache=name)
            except StorageError as e:
                logger.warning("Orphan cleanup failed", error=str(e))

            self.state = AgentState.ACTIVE
            logger.info("Interceptor activated", version=self.version_tag, deleted=len(deleted))
        return deleted

    async def skip_waiting(self) -> None:
        """Activate immediately if not already active."""
        if self.state != AgentState.ACTIVE:
            await self.activate()

    # Request path

    async def handle(self, request: Request) -> Response:
        """Resolve a request through its class's strategy.

        Non-read requests, non-http schemes and requests arriving before
        activation go straight to the network.

        Raises:
            NetworkError: Network failed and no cached copy exists.
        """
        if self.state != AgentState.ACTIVE or not self.classifier.is_interceptable(request):
            return await self.fetcher(request)

        url = self.classifier.absolute(request.url)
        request = Request(url=url, method=request.method, headers=request.headers)
        classification = self.classifier.classify(url)
        config = self.classifier.config_for(classification.resource_class)

        if classification.strategy == Strategy.CACHE_FIRST:
            return await self._cache_first(request, config)
        return await self._network_first(request, config)

    async def _cache_first(self, request: Request, config: ResourceClassConfig) -> Response:
        counters = self._counters[config.name]
        cache, cached = await self._lookup(request.url, config)

        if cached is not None and self._is_fresh(cached, config):
            counters.hits += 1
            logger.debug("Cache hit", url=request.url, cache_class=config.name.value)
            return cached

        counters.misses += 1
        try:
            response = await self.fetcher(request)
        except NetworkError:
            if cached is not None:
                counters.fallbacks += 1
                logger.info("Serving expired cache", url=request.url)
                return cached
            counters.errors += 1
            raise

        if response.ok and cache is not None:
            await self._store(cache, request.url, response, config)
        return response

    async def _network_first(self, request: Request, config: ResourceClassConfig) -> Response:
        counters = self._counters[config.name]
        try:
            response = await self.fetcher(request)
        except NetworkError:
            _, cached = await self._lookup(request.url, config)
            if cached is not None:
                counters.fallbacks += 1
                logger.info("Serving cached fallback", url=request.url)
                return cached
            counters.errors += 1
            raise

        if response.ok:
            try:
                cache = await self._open(config.name)
            except StorageError as e:
                logger.warning("Response cache unavailable", error=str(e))
            else:
                await self._store(cache, request.url, response, config)
        return response

    async def _lookup(
        self, url: str, config: ResourceClassConfig
    ) -> tuple[ResponseCache | None, Response | None]:
        """Open the class cache and match url; storage failures read as absent."""
        try:
            cache = await self._open(config.name)
            return cache, await cache.match(url)
        except StorageError as e:
            logger.warning("Response cache read failed", url=url, error=str(e))
            return None, None

    def _is_fresh(self, response: Response, config: ResourceClassConfig) -> bool:
        stamped = response.header(CACHE_DATE_HEADER)
        if not stamped:
            return False
        try:
            cached_at = iso_to_ms(stamped)
        except ValueError:
            return False
        return self.clock() - cached_at <= config.max_age_ms

    async def _store(
        self, cache: ResponseCache, url: str, response: Response, config: ResourceClassConfig
    ) -> None:
        """Stamp, store and trim. Failures are logged, never raised."""
        stamped = response.with_headers(
            x_cache_date=ms_to_iso(self.clock()),
            x_cache_class=config.name.value,
        )
        try:
            await cache.put(url, stamped)
            self._counters[config.name].sets += 1
            await self._trim(cache, config)
        except StorageError as e:
            self._counters[config.name].errors += 1
            logger.warning("Response cache write failed", url=url, error=str(e))

    async def _trim(self, cache: ResponseCache, config: ResourceClassConfig) -> None:
        """Delete the oldest entries (insertion order) above max_entries."""
        keys = await cache.keys()
        excess = len(keys) - config.max_entries
        if excess <= 0:
            return
        for url in keys[:excess]:
            await cache.delete(url)
        self._counters[config.name].evictions += excess
        logger.debug("Response cache trimmed", cache=cache.name, evicted=excess)

    async def _fetch_and_store(
        self, cache: ResponseCache, url: str, config: ResourceClassConfig
    ) -> bool:
        response = await self.fetcher(Request(url=url))
        if not response.ok:
            logger.warning("Not caching non-OK response", url=url, status=response.status)
            return False
        await self._store(cache, url, response, config)
        return True

    # Control messages

    async def cache_urls(self, urls: Sequence[str]) -> int:
        """Fetch and store URLs in the dynamic cache.

        Returns:
            Number of URLs stored.
        """
        return await self._cache_many(urls, ResourceClass.DYNAMIC)

    async def cache_with_strategy(self, url: str, strategy_name: str) -> bool:
        """Fetch and store one URL in the named class (explicit fallback)."""
        resource_class = resolve_resource_class(strategy_name)
        return await self._cache_many([url], resource_class) == 1

    async def warmup(self, urls: Sequence[str] | None = None) -> int:
        """Warm URLs, choosing each one's class through the rule table."""
        targets = list(urls) if urls else list(self.warmup_urls)
        logger.info("Starting cache warmup", urls=len(targets))
        stored = 0
        for url in targets:
            resource_class = self.classifier.classify(url).resource_class
            stored += await self._cache_many([url], resource_class)
        logger.info("Cache warmup completed", stored=stored)
        return stored

    async def sync(self, tag: str) -> int:
        """Run a background sync job by tag.

        ``cache-update`` refreshes the critical API URLs into the api cache;
        ``cache-warmup`` runs the default warmup. Other tags are ignored.

        Returns:
            Number of URLs stored.
        """
        with log_context(component="interceptor"):
            if tag == SYNC_CACHE_UPDATE:
                stored = await self._cache_many(self.critical_urls, ResourceClass.API)
                logger.info("Background cache update completed", stored=stored)
                return stored
            if tag == SYNC_CACHE_WARMUP:
                return await self.warmup()
            logger.debug("Ignoring unknown sync tag", tag=tag)
            return 0

    async def _cache_many(self, urls: Sequence[str], resource_class: ResourceClass) -> int:
        config = self.classifier.config_for(resource_class)
        stored = 0
        try:
            cache = await self._open(resource_class)
        except StorageError as e:
            logger.warning("Response cache unavailable", error=str(e))
            return 0
        for url in urls:
            absolute = self.classifier.absolute(url)
            try:
                if await self._fetch_and_store(cache, absolute, config):
                    stored += 1
            except NetworkError as e:
                logger.warning("Failed to cache URL", url=absolute, error=str(e))
        return stored

    async def handle_message(self, data: Any) -> dict[str, Any] | None:
        """Dispatch a control message from the application.

        Returns:
            A reply for GET_CACHE_METRICS, otherwise None.
        """
        try:
            message = parse_control_message(data)
        except ControlMessageError as e:
            logger.warning("Ignoring control message", error=str(e))
            return None

        with log_context(component="interceptor"):
            if isinstance(message, SkipWaiting):
                await self.skip_waiting()
            elif isinstance(message, CacheUrls):
                await self.cache_urls(message.urls)
            elif isinstance(message, CacheStrategy):
                await self.cache_with_strategy(message.url, message.strategy)
            elif isinstance(message, WarmupCache):
                await self.warmup(message.urls)
            elif isinstance(message, GetCacheMetrics):
                return {"type": "CACHE_METRICS", "metrics": self.cache_metrics()}
        return None

    # Metrics

    def cache_metrics(self) -> dict[str, Any]:
        """Reply body for GET_CACHE_METRICS."""
        total = self.counters()
        return {
            "version": self.version_tag,
            "classNames": [self.cache_name(rc) for rc in ResourceClass],
            "hitCount": total.hits,
            "missCount": total.misses,
            "timestamp": self.clock(),
        }

    def counters(self) -> CacheCounters:
        """Counters summed over every class."""
        total = CacheCounters()
        for counters in self._counters.values():
            total = total.merge(counters)
        return total

    def counters_by_class(self) -> dict[str, dict[str, int]]:
        return {rc.value: c.to_dict() for rc, c in sorted(self._counters.items())}

    async def total_size(self) -> int:
        """Stored body bytes across this generation's caches."""
        size = 0
        for resource_class in ResourceClass:
            try:
                size += await (await self._open(resource_class)).total_size()
            except StorageError as e:
                logger.warning("Size query failed", error=str(e))
        return size
