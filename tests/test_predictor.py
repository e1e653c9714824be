"""
Tests for behavior tracking and next-route prediction.
"""

from __future__ import annotations

import pytest

from conftest import ManualClock
from warmcache.behavior.predictor import BehaviorPredictor
from warmcache.cache.memory import MemoryMedium
from warmcache.cache.store import TieredStore
from warmcache.types import BehaviorRecord
from warmcache.warming.planner import RouteLayout

VEHICLES = "/search/vehicles/all"
REAL_ESTATE = "/search/real-estate/houses"


@pytest.fixture
def predictor(store: TieredStore, clock: ManualClock) -> BehaviorPredictor:
    return BehaviorPredictor(store, clock=clock)


class TestTracking:
    """Tests for tracking calls and persistence."""

    @pytest.mark.asyncio
    async def test_exact_repeats_suppressed(self, predictor: BehaviorPredictor) -> None:
        for route in ("/a", "/a", "/b", "/a"):
            await predictor.track_route_visit(route)

        assert predictor.record.visited_routes == ["/a", "/b", "/a"]

    @pytest.mark.asyncio
    async def test_history_bounded_to_twenty(self, predictor: BehaviorPredictor) -> None:
        for i in range(25):
            await predictor.track_route_visit(f"/r{i}")

        routes = predictor.record.visited_routes
        assert len(routes) == 20
        assert routes[0] == "/r5"
        assert routes[-1] == "/r24"

    @pytest.mark.asyncio
    async def test_counters(self, predictor: BehaviorPredictor, clock: ManualClock) -> None:
        await predictor.track_click("pagination")
        await predictor.track_click("pagination")
        await predictor.track_hover("card")
        await predictor.track_filter_usage("state")
        clock.advance(10)
        await predictor.track_time_on_page("/a", 1500)
        await predictor.track_time_on_page("/a", 500)

        record = predictor.record
        assert record.interaction_counts == {"pagination": 2}
        assert record.hover_counts == {"card": 1}
        assert record.filter_usage == {"state": 1}
        assert record.time_per_route == {"/a": 2000}

    @pytest.mark.asyncio
    async def test_scroll_depth_keeps_maximum(self, predictor: BehaviorPredictor) -> None:
        await predictor.enter_route("/a")
        await predictor.track_scroll_depth(40)
        await predictor.track_scroll_depth(75)
        await predictor.track_scroll_depth(20)
        await predictor.track_scroll_depth(150, route="/b")

        assert predictor.record.scroll_depth_by_route == {"/a": 75, "/b": 100}

    @pytest.mark.asyncio
    async def test_enter_route_records_dwell(
        self, predictor: BehaviorPredictor, clock: ManualClock
    ) -> None:
        await predictor.enter_route("/a")
        clock.advance(4000)
        await predictor.enter_route("/b")
        clock.advance(500)
        await predictor.enter_route("/c")

        assert predictor.record.time_per_route == {"/a": 4000}
        assert predictor.record.visited_routes == ["/a", "/b", "/c"]

    @pytest.mark.asyncio
    async def test_persisted_and_reloaded(self, store: TieredStore, clock: ManualClock) -> None:
        first = BehaviorPredictor(store, clock=clock)
        await first.track_route_visit("/a")
        await first.track_click("pagination")

        second = BehaviorPredictor(store, clock=clock)
        await second.load()

        assert second.record.visited_routes == ["/a"]
        assert second.record.interaction_counts == {"pagination": 1}

    @pytest.mark.asyncio
    async def test_clear(self, store: TieredStore, predictor: BehaviorPredictor, clock: ManualClock) -> None:
        await predictor.track_route_visit("/a")
        await predictor.clear()

        reloaded = BehaviorPredictor(store, clock=clock)
        await reloaded.load()
        assert reloaded.record.visited_routes == []

    @pytest.mark.asyncio
    async def test_persistence_failure_swallowed(self, clock: ManualClock) -> None:
        durable = MemoryMedium(quota_bytes=8, name="durable")
        store = TieredStore(durable, MemoryMedium(), prefix="test-", clock=clock)
        predictor = BehaviorPredictor(store, clock=clock)

        await predictor.track_route_visit("/a")
        await predictor.track_click("x")

        assert predictor.record.visited_routes == ["/a"]
        assert await durable.keys() == []

    @pytest.mark.asyncio
    async def test_works_without_store(self, clock: ManualClock) -> None:
        predictor = BehaviorPredictor(None, clock=clock)
        await predictor.load()
        await predictor.track_route_visit("/a")

        assert predictor.record.visited_routes == ["/a"]


class TestPrediction:
    """Tests for the ordered prediction heuristics."""

    def _predictor(self, clock: ManualClock, record: BehaviorRecord) -> BehaviorPredictor:
        predictor = BehaviorPredictor(None, clock=clock)
        predictor.record = record
        return predictor

    def test_alternating_categories(self, clock: ManualClock) -> None:
        """Rule 1: history of the other category predicts its default listing."""
        predictor = self._predictor(
            clock, BehaviorRecord(visited_routes=[VEHICLES, REAL_ESTATE, VEHICLES])
        )

        prediction = predictor.predict_next_action(current_route=VEHICLES)

        assert prediction is not None
        assert prediction.route == "/search/real-estate/all"
        assert prediction.confidence == 0.7

    def test_category_rule_needs_other_category(self, clock: ManualClock) -> None:
        predictor = self._predictor(clock, BehaviorRecord(visited_routes=[VEHICLES]))

        assert predictor.predict_next_action(current_route=VEHICLES) is None

    def test_custom_layout(self, clock: ManualClock) -> None:
        layout = RouteLayout(prefix="/buscar", categories=("a", "b"))
        predictor = BehaviorPredictor(None, layout=layout, clock=clock)
        predictor.record = BehaviorRecord(visited_routes=["/buscar/a/all", "/buscar/b/all", "/buscar/a/all"])

        prediction = predictor.predict_next_action(current_route="/buscar/a/all")

        assert prediction is not None
        assert prediction.route == "/buscar/b/all"

    def test_favorites_after_browsing(self, clock: ManualClock) -> None:
        """Rule 2: long, deep browsing with a favorites visit predicts favorites."""
        predictor = self._predictor(
            clock,
            BehaviorRecord(
                visited_routes=["/favorites", "/account"],
                scroll_depth_by_route={"/account": 80},
            ),
        )
        predictor.page_started_at = clock.now

        assert predictor.predict_next_action("/account", now=clock.now + 20_000) is None

        prediction = predictor.predict_next_action("/account", now=clock.now + 31_000)
        assert prediction is not None
        assert prediction.route == "/favorites"
        assert prediction.confidence == 0.6

    def test_favorites_needs_scroll(self, clock: ManualClock) -> None:
        predictor = self._predictor(
            clock,
            BehaviorRecord(visited_routes=["/favorites"], scroll_depth_by_route={"/account": 50}),
        )
        predictor.page_started_at = clock.now

        assert predictor.predict_next_action("/account", now=clock.now + 60_000) is None

    def test_pagination_predicts_next_page(self, clock: ManualClock) -> None:
        """Rule 3: frequent pagination predicts the next page."""
        predictor = self._predictor(
            clock, BehaviorRecord(interaction_counts={"pagination": 3})
        )

        prediction = predictor.predict_next_action("/search/vehicles/cars?page=2")

        assert prediction is not None
        assert prediction.route == "/search/vehicles/cars?page=3"
        assert prediction.confidence == 0.8

    def test_pagination_threshold(self, clock: ManualClock) -> None:
        predictor = self._predictor(
            clock, BehaviorRecord(interaction_counts={"pagination": 2})
        )

        assert predictor.predict_next_action("/search/vehicles/cars") is None

    def test_pagination_on_non_listing_route(self, clock: ManualClock) -> None:
        predictor = self._predictor(
            clock, BehaviorRecord(interaction_counts={"pagination": 5})
        )

        prediction = predictor.predict_next_action("/account/history")

        assert prediction is not None
        assert prediction.route == "/account/history?page=next"

    def test_most_visited_route(self, clock: ManualClock) -> None:
        """Rule 4: a route visited more than twice is predicted."""
        predictor = self._predictor(
            clock,
            BehaviorRecord(visited_routes=["/x", "/home", "/x", "/home", "/x", "/home"]),
        )

        prediction = predictor.predict_next_action("/home")

        assert prediction is not None
        assert prediction.route == "/x"
        assert prediction.confidence == 0.5

    def test_most_visited_needs_more_than_two(self, clock: ManualClock) -> None:
        predictor = self._predictor(
            clock, BehaviorRecord(visited_routes=["/x", "/home", "/x"])
        )

        assert predictor.predict_next_action("/home") is None

    def test_rule_order(self, clock: ManualClock) -> None:
        """Category alternation outranks pagination."""
        predictor = self._predictor(
            clock,
            BehaviorRecord(
                visited_routes=[REAL_ESTATE, VEHICLES],
                interaction_counts={"pagination": 10},
            ),
        )

        prediction = predictor.predict_next_action(VEHICLES)

        assert prediction is not None
        assert prediction.confidence == 0.7

    def test_no_current_route(self, clock: ManualClock) -> None:
        predictor = self._predictor(clock, BehaviorRecord(visited_routes=["/a"]))

        assert predictor.predict_next_action() is None

    @pytest.mark.asyncio
    async def test_uses_current_route_after_navigation(self, predictor: BehaviorPredictor) -> None:
        await predictor.enter_route(REAL_ESTATE)
        await predictor.enter_route(VEHICLES)

        prediction = predictor.predict_next_action()

        assert prediction is not None
        assert prediction.route == "/search/real-estate/all"
