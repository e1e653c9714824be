"""
Warming planners.

Caller-side task generation: translate the user's current context, a first
visit, or a behaviour prediction into WarmingTasks. The scheduler itself
never decides what to warm.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

from warmcache.cache.classes import get_cache_class
from warmcache.types import ListingQuery, Prediction, StoreClassName, WarmingTask

ListingFetcher = Callable[[ListingQuery], Awaitable[Any]]
FilterFetcher = Callable[[str], Awaitable[Any]]
ReferenceFetcher = Callable[[], Awaitable[Any]]

MAX_BEHAVIOR_ROUTES = 3
BEHAVIOR_BASE_PRIORITY = 8
SIBLING_CATEGORY_PRIORITY = 7
NEXT_PAGE_PRIORITY = 5
POPULAR_TYPE_BASE_PRIORITY = 4
FILTERS_PRIORITY = 1
NEXT_PAGES = (2, 3)


def _default_popular_types() -> dict[str, tuple[str, ...]]:
    return {
        "vehicles": ("cars", "motorcycles", "trucks"),
        "real-estate": ("apartments", "houses", "land"),
    }


@dataclass(frozen=True)
class RouteLayout:
    """Shape of the application's listing routes: ``{prefix}/{category}/{type}``."""

    prefix: str = "/search"
    categories: tuple[str, str] = ("vehicles", "real-estate")
    default_type: str = "all"
    popular_types: Mapping[str, tuple[str, ...]] = field(default_factory=_default_popular_types)
    favorites_route: str = "/favorites"

    def sibling(self, category: str) -> str | None:
        """The other category, or None for an unknown one."""
        first, second = self.categories
        if category == first:
            return second
        if category == second:
            return first
        return None

    def parse(self, route: str) -> ListingQuery | None:
        """Parse a listing route (with optional ``?page=N``) into a query."""
        parts = urlsplit(route)
        base = self.prefix.rstrip("/") + "/"
        if not parts.path.startswith(base):
            return None
        segments = [s for s in parts.path[len(base):].split("/") if s]
        if not segments or segments[0] not in self.categories:
            return None

        listing_type = segments[1] if len(segments) > 1 else self.default_type
        page = 1
        raw_page = parse_qs(parts.query).get("page")
        if raw_page and raw_page[0].isdigit():
            page = max(int(raw_page[0]), 1)
        return ListingQuery(category=segments[0], listing_type=listing_type, page=page)

    def route_for(self, query: ListingQuery) -> str:
        route = f"{self.prefix.rstrip('/')}/{query.category}/{query.listing_type}"
        return f"{route}?page={query.page}" if query.page > 1 else route

    def default_route(self, category: str) -> str:
        return self.route_for(ListingQuery(category, self.default_type))

    def category_of(self, route: str) -> str | None:
        query = self.parse(route)
        return query.category if query else None


@dataclass(frozen=True)
class WarmingContext:
    """Where the user is now and where they have recently been."""

    category: str
    listing_type: str
    recent_routes: Sequence[str] = ()


def listing_key(query: ListingQuery) -> str:
    """Cache key for a listing query; shared by warming and read-through."""
    return f"{query.category}-{query.listing_type}-page-{query.page}"


def listing_task(query: ListingQuery, priority: int, fetch_listing: ListingFetcher) -> WarmingTask:
    return WarmingTask(
        key=listing_key(query),
        priority=priority,
        producer=functools.partial(fetch_listing, query),
        target_class=get_cache_class(StoreClassName.LISTINGS),
    )


def plan_context_tasks(
    context: WarmingContext,
    fetch_listing: ListingFetcher,
    fetch_filters: FilterFetcher | None = None,
    layout: RouteLayout | None = None,
) -> list[WarmingTask]:
    """Build the candidate set for the user's current listing context.

    Behaviour-confirmed routes rank highest, then the sibling category's
    default listing, the next pages of the current listing, popular sibling
    types, and finally the category's filter options.
    """
    layout = layout or RouteLayout()
    tasks: list[WarmingTask] = []

    behavior_queries: list[ListingQuery] = []
    for route in context.recent_routes:
        query = layout.parse(route)
        if query is not None and query not in behavior_queries:
            behavior_queries.append(query)
        if len(behavior_queries) == MAX_BEHAVIOR_ROUTES:
            break
    for index, query in enumerate(behavior_queries):
        tasks.append(listing_task(query, BEHAVIOR_BASE_PRIORITY - index, fetch_listing))

    sibling = layout.sibling(context.category)
    if sibling is not None:
        tasks.append(
            listing_task(
                ListingQuery(sibling, layout.default_type), SIBLING_CATEGORY_PRIORITY, fetch_listing
            )
        )

    for page in NEXT_PAGES:
        tasks.append(
            listing_task(
                ListingQuery(context.category, context.listing_type, page),
                NEXT_PAGE_PRIORITY,
                fetch_listing,
            )
        )

    popular = [t for t in layout.popular_types.get(context.category, ()) if t != context.listing_type]
    for index, listing_type in enumerate(popular):
        priority = max(POPULAR_TYPE_BASE_PRIORITY - index, FILTERS_PRIORITY + 1)
        tasks.append(listing_task(ListingQuery(context.category, listing_type), priority, fetch_listing))

    if fetch_filters is not None:
        tasks.append(
            WarmingTask(
                key=f"filters-{context.category}",
                priority=FILTERS_PRIORITY,
                producer=functools.partial(fetch_filters, context.category),
                target_class=get_cache_class(StoreClassName.FILTERS),
            )
        )
    return tasks


def plan_first_visit_tasks(
    fetch_listing: ListingFetcher,
    fetch_reference: ReferenceFetcher | None = None,
    layout: RouteLayout | None = None,
) -> list[WarmingTask]:
    """Essentials for a first visit: both categories' default listings."""
    layout = layout or RouteLayout()
    first, second = layout.categories
    tasks = [
        listing_task(ListingQuery(first, layout.default_type), 10, fetch_listing),
        listing_task(ListingQuery(second, layout.default_type), 9, fetch_listing),
    ]
    if fetch_reference is not None:
        tasks.append(
            WarmingTask(
                key="states",
                priority=8,
                producer=fetch_reference,
                target_class=get_cache_class(StoreClassName.REFERENCE),
            )
        )
    return tasks


def prediction_to_task(
    prediction: Prediction,
    fetch_listing: ListingFetcher,
    layout: RouteLayout | None = None,
) -> WarmingTask | None:
    """Translate a prediction into a task, or None for a non-listing route."""
    layout = layout or RouteLayout()
    query = layout.parse(prediction.route)
    if query is None:
        return None
    return listing_task(query, round(prediction.confidence * 10), fetch_listing)
