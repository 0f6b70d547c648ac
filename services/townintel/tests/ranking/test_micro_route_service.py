"""
Tests for services/townintel/ranking/service.py

Covers:
- recompute_town_routes: one set per window, NotFound for unknown towns
- Demand provider failure degrades to no demand model
- Season overlay flows through recompute (tags detected in town timezone)
- get_or_recompute_window_routes: fresh hit, stale/missing recompute,
  throttled and failed recompute fall back to the existing row,
  store errors degrade to None, malformed window raises InvalidInput
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.townintel.errors import InvalidInput, NotFound, StoreFailure
from services.townintel.graph.models import SeasonTag, SeasonWeightDelta
from services.townintel.graph.taxonomy import Category
from services.townintel.graph.windows import WINDOWS, Window
from services.townintel.ranking.service import MicroRouteService
from services.townintel.realtime.throttle import RecomputeThrottle
from services.townintel.tests.conftest import (
    FIXED_NOW,
    OWNER_ID,
    TOWN_ID,
    make_demand,
    make_town,
    sample_edges,
)

pytestmark = pytest.mark.asyncio


async def _seed(store) -> None:
    await store.upsert_town(make_town(), owner_id=OWNER_ID)
    for edge in sample_edges():
        await store.upsert_edge(
            TOWN_ID, edge.from_category, edge.to_category, edge.weight, owner_id=OWNER_ID, now=FIXED_NOW
        )


def _closed_throttle() -> RecomputeThrottle:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=None)
    return RecomputeThrottle(redis)


# ---------------------------------------------------------------------------
# 1. recompute_town_routes
# ---------------------------------------------------------------------------

class TestRecompute:
    async def test_writes_every_window(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store)

        result = await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)

        assert result == {"updated": len(WINDOWS)}
        assert await file_store.route_status(TOWN_ID, owner_id=OWNER_ID) == (len(WINDOWS), FIXED_NOW)
        morning = await service.get_window_routes(TOWN_ID, "morning", owner_id=OWNER_ID)
        assert [(r.key, r.weight) for r in morning.routes] == [
            ("cafe>fitness>retail", 8.0),
            ("fitness>retail>retail", 4.5),
            ("cafe>retail>retail", 1.5),
        ]

    async def test_repeat_recompute_is_identical(self, file_store):
        await _seed(file_store)
        # tie with cafe->fitness->retail (5 + 3)
        await file_store.upsert_edge(TOWN_ID, Category.CAFE, Category.FOOD, 5.0, owner_id=OWNER_ID, now=FIXED_NOW)
        await file_store.upsert_edge(TOWN_ID, Category.FOOD, Category.RETAIL, 3.0, owner_id=OWNER_ID, now=FIXED_NOW)
        service = MicroRouteService(file_store)

        async def _snapshot() -> list[dict]:
            await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)
            sets = [await file_store.get_route_set(TOWN_ID, window, owner_id=OWNER_ID) for window in WINDOWS]
            return [route_set.model_dump(mode="json") for route_set in sets]

        first = await _snapshot()
        second = await _snapshot()

        assert first == second
        morning = first[0]["routes"]
        assert [r["route"] for r in morning[:2]] == [
            ["cafe", "fitness", "retail"],
            ["cafe", "food", "retail"],
        ]
        assert morning[0]["weight"] == morning[1]["weight"] == 8.0

    async def test_unknown_town_raises_not_found(self, file_store):
        service = MicroRouteService(file_store)
        with pytest.raises(NotFound):
            await service.recompute_town_routes("nowhere", owner_id=OWNER_ID)

    async def test_demand_model_applied(self, file_store):
        await _seed(file_store)
        provider = AsyncMock()
        provider.get_demand_model = AsyncMock(return_value=make_demand(busy=[(3, 7), (3, 8)]))
        service = MicroRouteService(file_store, demand_provider=provider)

        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)

        morning = await file_store.get_route_set(TOWN_ID, Window.MORNING, owner_id=OWNER_ID)
        assert morning.routes[0].weight == 9.12
        provider.get_demand_model.assert_awaited_once_with(TOWN_ID, owner_id=OWNER_ID)

    async def test_demand_failure_degrades_to_no_model(self, file_store):
        await _seed(file_store)
        provider = AsyncMock()
        provider.get_demand_model = AsyncMock(side_effect=RuntimeError("pulse down"))
        service = MicroRouteService(file_store, demand_provider=provider)

        assert await service.load_demand_model(TOWN_ID, owner_id=OWNER_ID) is None
        result = await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)
        assert result == {"updated": len(WINDOWS)}

    async def test_season_override_activates_deltas(self, file_store):
        await _seed(file_store)
        await file_store.add_season_delta(
            SeasonWeightDelta(
                town_id=TOWN_ID, season_tag=SeasonTag.FESTIVAL, window=Window.WEEKEND,
                from_category=Category.CAFE, to_category=Category.RETAIL, weight_delta=10.0,
            ),
            owner_id=OWNER_ID,
        )
        service = MicroRouteService(file_store)

        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)
        plain = await file_store.get_route_set(TOWN_ID, Window.WEEKEND, owner_id=OWNER_ID)
        assert plain.routes[0].key == "cafe>fitness>retail"

        await service.recompute_town_routes(
            TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW, season_override=SeasonTag.FESTIVAL
        )
        boosted = await file_store.get_route_set(TOWN_ID, Window.WEEKEND, owner_id=OWNER_ID)
        # cafe->retail 1 + 10, dead end adds 5.5
        assert (boosted.routes[0].key, boosted.routes[0].weight) == ("cafe>retail>retail", 16.5)

    async def test_routes_per_window_limit(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store, routes_per_window=1)
        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)
        lunch = await file_store.get_route_set(TOWN_ID, Window.LUNCH, owner_id=OWNER_ID)
        assert len(lunch.routes) == 1


# ---------------------------------------------------------------------------
# 2. get_or_recompute_window_routes
# ---------------------------------------------------------------------------

class TestGetOrRecompute:
    async def test_missing_set_is_computed(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store)

        route_set = await service.get_or_recompute_window_routes(
            TOWN_ID, Window.MORNING, owner_id=OWNER_ID, now=FIXED_NOW
        )

        assert route_set is not None
        assert route_set.routes[0].key == "cafe>fitness>retail"

    async def test_fresh_set_is_returned_without_recompute(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store)
        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)
        service.recompute_town_routes = AsyncMock()

        later = FIXED_NOW + timedelta(hours=27)
        route_set = await service.get_or_recompute_window_routes(
            TOWN_ID, Window.LUNCH, owner_id=OWNER_ID, now=later
        )

        assert route_set.computed_at == FIXED_NOW
        service.recompute_town_routes.assert_not_called()

    async def test_stale_set_is_recomputed(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store)
        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)

        later = FIXED_NOW + timedelta(hours=29)
        route_set = await service.get_or_recompute_window_routes(
            TOWN_ID, Window.LUNCH, owner_id=OWNER_ID, now=later
        )

        assert route_set.computed_at == later

    async def test_throttled_recompute_returns_existing_row(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store, throttle=_closed_throttle())
        await service.recompute_town_routes(TOWN_ID, owner_id=OWNER_ID, now=FIXED_NOW)

        later = FIXED_NOW + timedelta(hours=30)
        route_set = await service.get_or_recompute_window_routes(
            TOWN_ID, Window.LUNCH, owner_id=OWNER_ID, now=later
        )

        assert route_set.computed_at == FIXED_NOW

    async def test_throttled_with_no_row_is_none(self, file_store):
        await _seed(file_store)
        service = MicroRouteService(file_store, throttle=_closed_throttle())
        assert await service.get_or_recompute_window_routes(
            TOWN_ID, Window.LUNCH, owner_id=OWNER_ID, now=FIXED_NOW
        ) is None

    async def test_unknown_town_degrades_to_none(self, file_store):
        service = MicroRouteService(file_store)
        assert await service.get_or_recompute_window_routes("nowhere", "evening", owner_id=OWNER_ID) is None

    async def test_store_failure_degrades_to_none(self):
        store = AsyncMock()
        store.get_route_set = AsyncMock(side_effect=StoreFailure("disk gone"))
        service = MicroRouteService(store)
        assert await service.get_or_recompute_window_routes(TOWN_ID, "lunch", owner_id=OWNER_ID) is None

    async def test_malformed_window_raises(self, file_store):
        service = MicroRouteService(file_store)
        with pytest.raises(InvalidInput):
            await service.get_or_recompute_window_routes(TOWN_ID, "brunch", owner_id=OWNER_ID)
