"""
Tests for services/townintel/scheduling/staleness.py and scheduling/targets.py

Covers:
- is_stale: None is stale, strict > threshold, naive datetimes as UTC
- Limit clamp to [1, 100]
- Primary source oversampled 3x, secondaries 2x and only while short
- Dedup by town (shared) vs (owner, town) (partitioned)
- Early exit once `limit` due targets are found
- Route targets due when fewer than one set per window exists
- Season scheduler has no staleness check
"""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.townintel.graph.models import ScheduleTarget
from services.townintel.graph.windows import WINDOWS
from services.townintel.scheduling.staleness import (
    StalenessScheduler,
    clamp_limit,
    dedup_key_for,
    is_stale,
    owner_town_key,
    town_key,
)
from services.townintel.scheduling.targets import route_scheduler, season_scheduler, suggestion_scheduler
from services.townintel.tests.conftest import FIXED_NOW


class _StaticSource:
    def __init__(self, name: str, targets: list[ScheduleTarget]) -> None:
        self.name = name
        self._targets = targets
        self.asked: list[int] = []

    async def list_candidates(self, limit: int) -> list[ScheduleTarget]:
        self.asked.append(limit)
        return self._targets[:limit]


def _targets(*town_ids: str, owner_id: str | None = None) -> list[ScheduleTarget]:
    return [ScheduleTarget(town_id=t, owner_id=owner_id) for t in town_ids]


def _feed(targets: list[ScheduleTarget]) -> MagicMock:
    feed = MagicMock()
    feed.list_active_targets = AsyncMock(return_value=targets)
    return feed


# ---------------------------------------------------------------------------
# 1. Staleness rule
# ---------------------------------------------------------------------------

class TestIsStale:
    def test_never_computed_is_stale(self):
        assert is_stale(None, 22, FIXED_NOW)

    def test_exactly_at_threshold_is_fresh(self):
        assert not is_stale(FIXED_NOW - timedelta(hours=22), 22, FIXED_NOW)

    def test_past_threshold_is_stale(self):
        assert is_stale(FIXED_NOW - timedelta(hours=22, seconds=1), 22, FIXED_NOW)

    def test_naive_timestamp_is_utc(self):
        naive = datetime(2026, 3, 4, 14, 0)
        assert not is_stale(naive, 2, FIXED_NOW)
        assert is_stale(naive, 0.5, FIXED_NOW.replace(tzinfo=None))

    @pytest.mark.parametrize("raw,expected", [(0, 1), (-5, 1), (30, 30), (500, 100)])
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw) == expected


# ---------------------------------------------------------------------------
# 2. Discovery
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestDiscovery:
    async def test_oversamples_primary_three_x(self):
        primary = _StaticSource("primary", _targets(*[f"t{i}" for i in range(20)]))
        secondary = _StaticSource("secondary", _targets("x"))
        scheduler = StalenessScheduler("test", [primary, secondary], None, None)

        found = await scheduler.discover(4)

        assert primary.asked == [12]
        assert secondary.asked == []
        assert len(found) == 12

    async def test_secondary_only_when_short(self):
        primary = _StaticSource("primary", _targets("a"))
        secondary = _StaticSource("secondary", _targets("a", "b", "c"))
        scheduler = StalenessScheduler("test", [primary, secondary], None, None)

        found = await scheduler.discover(5)

        assert secondary.asked == [10]
        assert [t.town_id for t in found] == ["a", "b", "c"]

    async def test_partitioned_dedup_keeps_owners_apart(self):
        primary = _StaticSource("primary", [
            ScheduleTarget("town-1", "owner-a"),
            ScheduleTarget("town-1", "owner-b"),
            ScheduleTarget("town-1", "owner-a"),
        ])
        partitioned = StalenessScheduler("test", [primary], None, None, dedup_key=dedup_key_for(False))
        shared = StalenessScheduler("test", [primary], None, None, dedup_key=dedup_key_for(True))

        assert len(await partitioned.discover(10)) == 2
        assert len(await shared.discover(10)) == 1


class TestSchedulerConstruction:
    def test_dedup_keys(self):
        target = ScheduleTarget("town-1", None)
        assert town_key(target) == "town-1"
        assert owner_town_key(target) == ("", "town-1")

    def test_requires_a_source(self):
        with pytest.raises(ValueError):
            StalenessScheduler("test", [], None, None)

    def test_getter_requires_threshold(self):
        getter = AsyncMock(return_value=None)
        with pytest.raises(ValueError):
            StalenessScheduler("test", [_StaticSource("p", [])], getter, None)


# ---------------------------------------------------------------------------
# 3. Due targets
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestDueTargets:
    async def test_filters_fresh_and_exits_early(self):
        primary = _StaticSource("primary", _targets("fresh", "old", "never", "old2", "old3"))
        computed = {
            "fresh": FIXED_NOW - timedelta(hours=1),
            "old": FIXED_NOW - timedelta(hours=30),
            "never": None,
            "old2": FIXED_NOW - timedelta(hours=40),
            "old3": FIXED_NOW - timedelta(hours=50),
        }
        calls: list[str] = []

        async def getter(target: ScheduleTarget):
            calls.append(target.town_id)
            return computed[target.town_id]

        scheduler = StalenessScheduler("test", [primary], getter, 22)

        due = await scheduler.list_due_targets(2, now=FIXED_NOW)

        assert [t.town_id for t in due] == ["old", "never"]
        assert calls == ["fresh", "old", "never"]

    async def test_no_getter_means_everything_due(self):
        primary = _StaticSource("primary", _targets("a", "b"))
        scheduler = StalenessScheduler("test", [primary], None, None)
        assert [t.town_id for t in await scheduler.list_due_targets(10)] == ["a", "b"]


# ---------------------------------------------------------------------------
# 4. Concrete schedulers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestConcreteSchedulers:
    async def test_route_target_due_when_windows_missing(self):
        store = MagicMock()
        store.shared_topology = True
        store.list_recent_graph_targets = AsyncMock(return_value=[])
        store.route_status = AsyncMock(side_effect=[
            (len(WINDOWS) - 1, FIXED_NOW),
            (len(WINDOWS), FIXED_NOW),
            (len(WINDOWS), FIXED_NOW - timedelta(hours=29)),
        ])
        scheduler = route_scheduler(store, _feed(_targets("partial", "fresh", "stale")))

        due = await scheduler.list_due_targets(10, now=FIXED_NOW)

        assert [t.town_id for t in due] == ["partial", "stale"]

    async def test_suggestion_targets_use_latest_computed_at(self):
        store = MagicMock()
        store.shared_topology = True
        store.list_recent_graph_targets = AsyncMock(return_value=_targets("quiet"))
        store.latest_suggestion_computed_at = AsyncMock(side_effect=[
            FIXED_NOW - timedelta(hours=23),
            FIXED_NOW - timedelta(hours=2),
        ])
        scheduler = suggestion_scheduler(store, _feed(_targets("busy")))

        due = await scheduler.list_due_targets(5, now=FIXED_NOW)

        assert [t.town_id for t in due] == ["busy"]
        store.list_recent_graph_targets.assert_awaited_once_with(10)

    async def test_season_scheduler_has_no_staleness(self, file_store):
        scheduler = season_scheduler(file_store, _feed(_targets("a", owner_id="owner-1")))
        due = await scheduler.list_due_targets(5)
        assert due == [ScheduleTarget("a", "owner-1")]
