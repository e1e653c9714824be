"""
Tests for warming planners and route layout.
"""

from __future__ import annotations

from typing import Any

import pytest

from warmcache.types import ListingQuery, Prediction, StoreClassName
from warmcache.warming.planner import (
    RouteLayout,
    WarmingContext,
    listing_key,
    plan_context_tasks,
    plan_first_visit_tasks,
    prediction_to_task,
)

LAYOUT = RouteLayout()


async def fetch_listing(query: ListingQuery) -> dict[str, Any]:
    return {"category": query.category, "type": query.listing_type, "page": query.page}


async def fetch_filters(category: str) -> list[str]:
    return [f"{category}-state", f"{category}-format"]


class TestRouteLayout:
    """Tests for listing route parsing and building."""

    def test_parse_listing_route(self) -> None:
        assert LAYOUT.parse("/search/vehicles/cars") == ListingQuery("vehicles", "cars", 1)

    def test_parse_page_query(self) -> None:
        assert LAYOUT.parse("/search/vehicles/cars?page=3") == ListingQuery("vehicles", "cars", 3)

    def test_parse_category_only_uses_default_type(self) -> None:
        assert LAYOUT.parse("/search/real-estate") == ListingQuery("real-estate", "all", 1)

    @pytest.mark.parametrize(
        "route", ["/favorites", "/search/boats/all", "/searching/vehicles/all", "/"]
    )
    def test_non_listing_routes(self, route: str) -> None:
        assert LAYOUT.parse(route) is None

    def test_route_for_roundtrip(self) -> None:
        assert LAYOUT.route_for(ListingQuery("vehicles", "cars", 2)) == "/search/vehicles/cars?page=2"
        assert LAYOUT.default_route("real-estate") == "/search/real-estate/all"

    def test_sibling(self) -> None:
        assert LAYOUT.sibling("vehicles") == "real-estate"
        assert LAYOUT.sibling("real-estate") == "vehicles"
        assert LAYOUT.sibling("boats") is None


class TestPlanContextTasks:
    """Tests for context-driven task generation."""

    def test_candidate_set_and_priorities(self) -> None:
        context = WarmingContext(
            category="vehicles",
            listing_type="cars",
            recent_routes=["/search/real-estate/houses", "/favorites", "/search/vehicles/trucks"],
        )

        tasks = plan_context_tasks(context, fetch_listing, fetch_filters)
        # Same-key candidates collapse to the highest priority once queued
        priorities: dict[str, int] = {}
        for task in tasks:
            priorities[task.key] = max(task.priority, priorities.get(task.key, 0))

        assert priorities == {
            "real-estate-houses-page-1": 8,
            "vehicles-trucks-page-1": 7,
            "real-estate-all-page-1": 7,
            "vehicles-cars-page-2": 5,
            "vehicles-cars-page-3": 5,
            "vehicles-motorcycles-page-1": 4,
            "filters-vehicles": 1,
        }

    def test_duplicate_candidates_resolved_by_scheduler(self) -> None:
        """A behaviour route equal to a popular type yields two tasks with one key."""
        context = WarmingContext("vehicles", "cars", recent_routes=["/search/vehicles/trucks"])

        tasks = plan_context_tasks(context, fetch_listing)
        trucks = [t.priority for t in tasks if t.key == "vehicles-trucks-page-1"]

        assert sorted(trucks) == [3, 8]

    def test_behavior_routes_capped_at_three(self) -> None:
        routes = [f"/search/vehicles/type{i}" for i in range(6)]
        context = WarmingContext("real-estate", "all", recent_routes=routes)

        tasks = plan_context_tasks(context, fetch_listing, layout=LAYOUT)
        behavior = [t for t in tasks if t.key.startswith("vehicles-type")]

        assert [t.priority for t in behavior] == [8, 7, 6]

    def test_filters_task_needs_fetcher(self) -> None:
        tasks = plan_context_tasks(WarmingContext("vehicles", "all"), fetch_listing)

        assert not any(t.key.startswith("filters-") for t in tasks)

    def test_target_classes(self) -> None:
        tasks = plan_context_tasks(WarmingContext("vehicles", "all"), fetch_listing, fetch_filters)
        classes = {t.key: t.target_class.name for t in tasks}

        assert classes["filters-vehicles"] == StoreClassName.FILTERS
        assert classes["real-estate-all-page-1"] == StoreClassName.LISTINGS

    @pytest.mark.asyncio
    async def test_producers_bound_to_queries(self) -> None:
        tasks = plan_context_tasks(WarmingContext("vehicles", "cars"), fetch_listing, fetch_filters)
        by_key = {t.key: t for t in tasks}

        assert await by_key["vehicles-cars-page-3"].producer() == {
            "category": "vehicles",
            "type": "cars",
            "page": 3,
        }
        assert await by_key["filters-vehicles"].producer() == [
            "vehicles-state",
            "vehicles-format",
        ]


class TestFirstVisit:
    def test_both_categories(self) -> None:
        tasks = plan_first_visit_tasks(fetch_listing)

        assert [(t.key, t.priority) for t in tasks] == [
            ("vehicles-all-page-1", 10),
            ("real-estate-all-page-1", 9),
        ]

    def test_reference_data_when_supplied(self) -> None:
        async def fetch_states() -> list[str]:
            return ["SP", "RJ"]

        tasks = plan_first_visit_tasks(fetch_listing, fetch_states)

        assert tasks[-1].key == "states"
        assert tasks[-1].target_class.name == StoreClassName.REFERENCE


class TestPredictionToTask:
    def test_priority_from_confidence(self) -> None:
        prediction = Prediction("/search/real-estate/all", 0.7, "alternates")

        task = prediction_to_task(prediction, fetch_listing)

        assert task is not None
        assert task.priority == 7
        assert task.key == listing_key(ListingQuery("real-estate", "all"))

    def test_next_page_prediction(self) -> None:
        task = prediction_to_task(Prediction("/search/vehicles/cars?page=4", 0.8, "paging"), fetch_listing)

        assert task is not None
        assert task.key == "vehicles-cars-page-4"
        assert task.priority == 8

    def test_non_listing_route_yields_nothing(self) -> None:
        assert prediction_to_task(Prediction("/favorites", 0.6, "favorites"), fetch_listing) is None
