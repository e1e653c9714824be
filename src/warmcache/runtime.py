"""
CacheRuntime: the application root.

Constructs exactly one of each component from Settings, wires them together
and owns their lifecycle. There are no module-level singletons; callers hold
a CacheRuntime and pass its components down.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from warmcache.behavior.predictor import BehaviorPredictor
from warmcache.cache.base import StorageMedium
from warmcache.cache.kv_cache import SqliteMedium
from warmcache.cache.memory import MemoryMedium
from warmcache.cache.store import TieredStore
from warmcache.config import Settings, get_settings
from warmcache.exceptions import StorageError
from warmcache.interceptor.fetcher import Fetcher, HttpxFetcher
from warmcache.interceptor.interceptor import RequestInterceptor
from warmcache.interceptor.response_cache import ResponseCacheStorage
from warmcache.interceptor.rules import RequestClassifier, build_default_rules
from warmcache.logging import get_logger, log_context
from warmcache.monitoring import MonitoringFacade
from warmcache.types import (
    CacheClass,
    Clock,
    Prediction,
    Producer,
    WarmingTask,
    generate_id,
    now_ms,
)
from warmcache.warming.idle import InFlightCounter
from warmcache.warming.planner import (
    FilterFetcher,
    ListingFetcher,
    ReferenceFetcher,
    RouteLayout,
    WarmingContext,
    plan_context_tasks,
    plan_first_visit_tasks,
    prediction_to_task,
)
from warmcache.warming.scheduler import WarmingScheduler

logger = get_logger(__name__)


class CacheRuntime:
    """Owns the cache components for one application session."""

    def __init__(
        self,
        settings: Settings | None = None,
        fetcher: Fetcher | None = None,
        clock: Clock = now_ms,
        layout: RouteLayout | None = None,
        durable: StorageMedium | None = None,
        session: StorageMedium | None = None,
        response_storage: ResponseCacheStorage | None = None,
    ) -> None:
        """Build and wire every component.

        Args:
            settings: Configuration; defaults to get_settings().
            fetcher: Network fetch callable; defaults to an HttpxFetcher
                owned (and closed) by the runtime.
            clock: Millisecond clock shared by all components.
            layout: Listing route layout used for planning and prediction.
            durable: Durable medium; defaults to SQLite at CACHE_DB_PATH.
            session: Session medium; defaults to an in-memory medium.
            response_storage: Response cache storage; defaults to CACHE_DB_PATH.
        """
        self.settings = settings if settings is not None else get_settings()
        self.session_id = generate_id("session")
        self.clock = clock
        self.layout = layout or RouteLayout()

        self.durable = durable if durable is not None else SqliteMedium(self.settings.CACHE_DB_PATH)
        self.session = (
            session if session is not None else MemoryMedium(self.settings.SESSION_QUOTA_BYTES)
        )
        self.store = TieredStore(
            self.durable, self.session, prefix=self.settings.CACHE_PREFIX, clock=clock
        )

        self.in_flight = InFlightCounter()
        self.scheduler = WarmingScheduler(
            self.store,
            in_flight=self.in_flight,
            max_concurrent=self.settings.WARMING_MAX_CONCURRENT,
            task_delay_ms=self.settings.WARMING_TASK_DELAY_MS,
            idle_poll_ms=self.settings.IDLE_POLL_MS,
            idle_poll_max_ms=self.settings.IDLE_POLL_MAX_MS,
            max_requeues=self.settings.WARMING_MAX_REQUEUES,
        )
        self.predictor = BehaviorPredictor(self.store, layout=self.layout, clock=clock)

        self._owned_fetcher = HttpxFetcher() if fetcher is None else None
        self.response_storage = (
            response_storage
            if response_storage is not None
            else ResponseCacheStorage(self.settings.CACHE_DB_PATH)
        )
        self.classifier = RequestClassifier(
            self.settings.APP_ORIGIN,
            rules=build_default_rules(
                reference_hosts=self.settings.REFERENCE_API_HOSTS,
                data_hosts=self.settings.DATA_API_HOSTS,
                app_route_prefixes=self.settings.APP_ROUTE_PREFIXES,
            ),
        )
        self.interceptor = RequestInterceptor(
            self.response_storage,
            fetcher if fetcher is not None else self._owned_fetcher,
            self.classifier,
            app_name=self.settings.APP_NAME,
            version_tag=self.settings.CACHE_VERSION_TAG,
            clock=clock,
            warmup_urls=self.default_warmup_urls(),
            critical_urls=self.settings.CRITICAL_API_URLS,
        )
        self.monitoring = MonitoringFacade(
            self.store, interceptor=self.interceptor, scheduler=self.scheduler, clock=clock
        )

        self._cleanup_task: asyncio.Task[None] | None = None
        self._started = False

    def default_warmup_urls(self) -> list[str]:
        """Shell, each category's default listing and the main stylesheet."""
        return [
            "/",
            *(self.layout.default_route(c) for c in self.layout.categories),
            "/assets/index.css",
        ]

    # Lifecycle

    async def start(self, install: bool = True) -> None:
        """Open media, load behaviour, bring the interceptor up and schedule cleanup.

        A medium that fails to open is logged and left closed; reads against
        it miss and writes are dropped, so fetch() still serves producers.

        Args:
            install: Precache the static shell before activating.
        """
        if self._started:
            return
        with log_context(session_id=self.session_id, component="runtime"):
            await self._open_medium(self.durable)
            await self._open_medium(self.session)
            await self._open_medium(self.response_storage)

            await self.predictor.load()

            if install:
                await self.interceptor.install()
            await self.interceptor.activate()

            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(), name="warmcache-cleanup"
            )
            self._started = True
            logger.info(
                "Cache runtime started",
                prefix=self.settings.CACHE_PREFIX,
                version=self.settings.CACHE_VERSION_TAG,
            )

    async def _open_medium(self, medium: StorageMedium | ResponseCacheStorage) -> None:
        try:
            await medium.open()
        except StorageError as e:
            logger.warning("Storage unavailable, running uncached", error=str(e))

    async def close(self) -> None:
        """Final cleanup, stop warming and close every medium."""
        if not self._started:
            return
        with log_context(session_id=self.session_id, component="runtime"):
            if self._cleanup_task is not None:
                self._cleanup_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._cleanup_task
                self._cleanup_task = None

            await self.predictor.flush_time_on_page()
            await self.store.cleanup()
            await self.scheduler.stop()

            if self._owned_fetcher is not None:
                await self._owned_fetcher.close()
            await self.response_storage.close()
            await self.durable.close()
            await self.session.close()
            self._started = False
            logger.info("Cache runtime closed")

    async def __aenter__(self) -> CacheRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _cleanup_loop(self) -> None:
        """Periodic cleanup; the first pass waits for the initial delay."""
        await asyncio.sleep(self.settings.CLEANUP_INITIAL_DELAY_S)
        while True:
            with log_context(session_id=self.session_id, component="cleanup"):
                await self.store.cleanup()
            await asyncio.sleep(self.settings.CLEANUP_INTERVAL_S)

    # Read-through path

    async def fetch(self, key: str, cache_class: CacheClass, producer: Producer) -> Any:
        """Serve from the store, or run the producer and cache its result.

        Producer failures propagate; they are business-logic errors.
        """
        cached = await self.store.get(key, cache_class)
        if cached is not None:
            return cached
        async with self.in_flight.track():
            value = await producer()
        await self.store.set(key, value, cache_class)
        return value

    async def sync(self, tag: str) -> int:
        """Run an interceptor background sync job (cache-update, cache-warmup)."""
        with log_context(session_id=self.session_id, component="runtime"):
            return await self.interceptor.sync(tag)

    # Warming entry points

    def warm_for_context(
        self,
        context: WarmingContext,
        fetch_listing: ListingFetcher,
        fetch_filters: FilterFetcher | None = None,
    ) -> int:
        """Queue context-driven tasks and start warming.

        Returns:
            Number of newly queued tasks.
        """
        if not context.recent_routes:
            context = WarmingContext(
                context.category, context.listing_type, tuple(self.predictor.record.visited_routes)
            )
        tasks = plan_context_tasks(context, fetch_listing, fetch_filters, layout=self.layout)
        return self._submit(tasks)

    def warm_for_first_visit(
        self,
        fetch_listing: ListingFetcher,
        fetch_reference: ReferenceFetcher | None = None,
    ) -> int:
        tasks = plan_first_visit_tasks(fetch_listing, fetch_reference, layout=self.layout)
        return self._submit(tasks)

    def warm_from_prediction(
        self, fetch_listing: ListingFetcher, current_route: str | None = None
    ) -> Prediction | None:
        """Predict the next route and queue it when it is a listing."""
        prediction = self.predictor.predict_next_action(current_route)
        if prediction is None:
            return None
        task = prediction_to_task(prediction, fetch_listing, layout=self.layout)
        if task is not None:
            self._submit([task])
        return prediction

    def _submit(self, tasks: list[WarmingTask]) -> int:
        added = sum(1 for task in tasks if self.scheduler.add_task(task))
        if self.scheduler.queued():
            self.scheduler.start()
        return added
