"""
BehaviorPredictor: navigation tracking and next-route prediction.

Tracking calls mutate a BehaviorRecord and persist it through TieredStore
under the behavior class. Persistence is best-effort: a failed write is
logged at debug level and never surfaces to the caller.

predict_next_action() evaluates ordered heuristics; the first that applies
wins:

1. On one category with a prior visit to the other: the other category's
   default listing (0.7).
2. More than 30 s on the page, scrolled past 50%, and a favorites visit in
   history: the favorites route (0.6).
3. More than two pagination clicks: the next page of the current route (0.8).
4. The most visited other route, if visited more than twice (0.5).
5. Otherwise no prediction.
"""

from __future__ import annotations

from collections import Counter

from warmcache.cache.classes import get_cache_class
from warmcache.cache.store import TieredStore
from warmcache.logging import get_logger
from warmcache.types import (
    BehaviorRecord,
    CacheClass,
    Clock,
    ListingQuery,
    Prediction,
    StoreClassName,
    now_ms,
)
from warmcache.warming.planner import RouteLayout

logger = get_logger(__name__)

RECORD_KEY = "record"
MAX_VISITED_ROUTES = 20
MIN_DWELL_MS = 1000
PAGINATION_LABEL = "pagination"

CATEGORY_SWITCH_CONFIDENCE = 0.7
FAVORITES_CONFIDENCE = 0.6
NEXT_PAGE_CONFIDENCE = 0.8
MOST_VISITED_CONFIDENCE = 0.5

FAVORITES_MIN_DWELL_MS = 30_000
FAVORITES_MIN_SCROLL = 50
PAGINATION_MIN_CLICKS = 2
MOST_VISITED_MIN_COUNT = 2


class BehaviorPredictor:
    """Tracks interaction signals and predicts the next navigation target."""

    def __init__(
        self,
        store: TieredStore | None = None,
        layout: RouteLayout | None = None,
        clock: Clock = now_ms,
        cache_class: CacheClass | None = None,
    ) -> None:
        self.store = store
        self.layout = layout or RouteLayout()
        self.clock = clock
        self.cache_class = cache_class or get_cache_class(StoreClassName.BEHAVIOR)
        self.record = BehaviorRecord(last_activity=clock())
        self.current_route: str | None = None
        self.page_started_at = clock()

    # Persistence

    async def load(self) -> None:
        """Merge the persisted record into the in-memory one."""
        if self.store is None:
            return
        data = await self.store.get(RECORD_KEY, self.cache_class)
        if not isinstance(data, dict):
            return
        try:
            self.record = BehaviorRecord.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            logger.debug("Ignoring unreadable behavior record", error=str(e))
            return
        logger.debug("Behavior record loaded", routes=len(self.record.visited_routes))

    async def _save(self) -> None:
        if self.store is None:
            return
        if not await self.store.set(RECORD_KEY, self.record.to_dict(), self.cache_class):
            logger.debug("Behavior record not persisted")

    def _touch(self) -> None:
        self.record.last_activity = self.clock()

    # Tracking

    async def track_route_visit(self, route: str) -> None:
        """Append a route to the bounded history, suppressing exact repeats."""
        routes = self.record.visited_routes
        if not routes or routes[-1] != route:
            routes.append(route)
            del routes[:-MAX_VISITED_ROUTES]
        self._touch()
        await self._save()

    async def enter_route(self, route: str) -> None:
        """Handle a navigation: close the previous page's dwell and track the visit."""
        await self.flush_time_on_page()
        await self.track_route_visit(route)
        self.current_route = route
        self.page_started_at = self.clock()

    async def flush_time_on_page(self) -> None:
        """Record the dwell on the current page if it lasted at least a second."""
        previous = self.current_route or (
            self.record.visited_routes[-1] if self.record.visited_routes else None
        )
        spent = self.clock() - self.page_started_at
        if previous and spent >= MIN_DWELL_MS:
            await self.track_time_on_page(previous, spent)
        self.page_started_at = self.clock()

    async def track_time_on_page(self, route: str, ms: int) -> None:
        self.record.time_per_route[route] = self.record.time_per_route.get(route, 0) + ms
        await self._save()

    async def track_click(self, label: str) -> None:
        counts = self.record.interaction_counts
        counts[label] = counts.get(label, 0) + 1
        self._touch()
        await self._save()

    async def track_hover(self, label: str) -> None:
        counts = self.record.hover_counts
        counts[label] = counts.get(label, 0) + 1
        self._touch()
        await self._save()

    async def track_filter_usage(self, filter_type: str) -> None:
        usage = self.record.filter_usage
        usage[filter_type] = usage.get(filter_type, 0) + 1
        self._touch()
        await self._save()

    async def track_scroll_depth(self, percent: int, route: str | None = None) -> None:
        """Keep the maximum scroll depth (0-100) seen on a route."""
        route = route or self.current_route
        if route is None:
            return
        percent = max(0, min(100, int(percent)))
        depths = self.record.scroll_depth_by_route
        if percent <= depths.get(route, 0):
            return
        depths[route] = percent
        self._touch()
        await self._save()

    async def clear(self) -> None:
        """Reset the record and persist the empty state."""
        self.record = BehaviorRecord(last_activity=self.clock())
        await self._save()

    # Prediction

    def predict_next_action(
        self, current_route: str | None = None, now: int | None = None
    ) -> Prediction | None:
        """Guess the next navigation target from the current record."""
        route = current_route or self.current_route
        if route is None:
            return None
        now = self.clock() if now is None else now
        record = self.record

        category = self.layout.category_of(route)
        sibling = self.layout.sibling(category) if category else None
        if sibling is not None and any(
            self.layout.category_of(r) == sibling for r in record.visited_routes
        ):
            return Prediction(
                route=self.layout.default_route(sibling),
                confidence=CATEGORY_SWITCH_CONFIDENCE,
                reason=f"User alternates between {category} and {sibling}",
            )

        favorites = self.layout.favorites_route
        dwell = now - self.page_started_at
        if (
            dwell > FAVORITES_MIN_DWELL_MS
            and record.scroll_depth_by_route.get(route, 0) > FAVORITES_MIN_SCROLL
            and any(r.startswith(favorites) for r in record.visited_routes)
        ):
            return Prediction(
                route=favorites,
                confidence=FAVORITES_CONFIDENCE,
                reason="User visits favorites after browsing",
            )

        if record.interaction_counts.get(PAGINATION_LABEL, 0) > PAGINATION_MIN_CLICKS:
            return Prediction(
                route=self._next_page_route(route),
                confidence=NEXT_PAGE_CONFIDENCE,
                reason="User frequently paginates",
            )

        counts = Counter(r for r in record.visited_routes if r != route)
        if counts:
            most_visited, visits = counts.most_common(1)[0]
            if visits > MOST_VISITED_MIN_COUNT:
                return Prediction(
                    route=most_visited,
                    confidence=MOST_VISITED_CONFIDENCE,
                    reason="Most visited route",
                )
        return None

    def _next_page_route(self, route: str) -> str:
        query = self.layout.parse(route)
        if query is None:
            return f"{route}?page=next"
        return self.layout.route_for(
            ListingQuery(query.category, query.listing_type, query.page + 1)
        )
