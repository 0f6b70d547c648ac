"""
Tests for services/townintel/pulse/provider.py

Covers:
- parse_demand_model: JSON string or dict, malformed slots dropped,
  'mixed' maps to other, unknown categories dropped, defaults
- PgPulseProvider: latest model row, signal feed collapsed to distinct towns
- FilePulseProvider: per-owner models, signals newest first, corrupt files
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.townintel.errors import StoreFailure
from services.townintel.graph.models import DemandSlot, ScheduleTarget, Trend
from services.townintel.graph.taxonomy import Category
from services.townintel.pulse.provider import FilePulseProvider, PgPulseProvider, parse_demand_model

_MODEL = {
    "busyWindows": [{"dow": 5, "hour": 17}, {"dow": 9, "hour": 10}, {"dow": 1, "hour": "7"}],
    "slowWindows": [{"dow": 2, "hour": 14}, "bad"],
    "categoryTrends": [
        {"category": "cafe", "trend": "UP"},
        {"category": "mixed", "trend": "down"},
        {"category": "bowling", "trend": "up"},
        {"category": "food", "trend": "sideways"},
    ],
    "eventEnergy": "high",
    "seasonalNotes": "Fair week downtown.",
}


def _make_conn(fetchrow=None, fetch=None) -> MagicMock:
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value=fetchrow)
    conn.fetch = AsyncMock(return_value=fetch or [])
    return conn


def _make_pool(conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    acquire_cm = MagicMock()
    acquire_cm.__aenter__ = AsyncMock(return_value=conn)
    acquire_cm.__aexit__ = AsyncMock(return_value=False)
    pool.acquire = MagicMock(return_value=acquire_cm)
    return pool


def _write(path, rows) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(rows), encoding="utf-8")


# ---------------------------------------------------------------------------
# 1. parse_demand_model
# ---------------------------------------------------------------------------

class TestParseDemandModel:
    def test_full_document(self):
        model = parse_demand_model(_MODEL)

        assert model.busy_slots == (DemandSlot(day_of_week=5, hour=17),)
        assert model.slow_slots == (DemandSlot(day_of_week=2, hour=14),)
        assert model.category_trends == {Category.CAFE: Trend.UP, Category.OTHER: Trend.DOWN}
        assert model.event_energy == "high"
        assert model.seasonal_notes == "Fair week downtown."

    def test_json_string(self):
        assert parse_demand_model(json.dumps(_MODEL)).event_energy == "high"

    def test_defaults(self):
        model = parse_demand_model({"eventEnergy": "extreme", "seasonalNotes": ""})
        assert model.busy_slots == ()
        assert model.category_trends == {}
        assert model.event_energy == "low"
        assert model.seasonal_notes == "Town rhythm is still warming up."

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", None, 42])
    def test_unusable_input_is_none(self, raw):
        assert parse_demand_model(raw) is None


# ---------------------------------------------------------------------------
# 2. PgPulseProvider
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestPgPulseProvider:
    async def test_latest_model(self):
        conn = _make_conn(fetchrow={"model": json.dumps(_MODEL)})
        provider = PgPulseProvider(_make_pool(conn))

        model = await provider.get_demand_model("town-1", owner_id="ignored")

        assert model.event_energy == "high"
        sql, town_ref = conn.fetchrow.call_args.args
        assert "FROM town_pulse_models" in sql
        assert town_ref == "town-1"

    async def test_no_model_row(self):
        provider = PgPulseProvider(_make_pool(_make_conn(fetchrow=None)))
        assert await provider.get_demand_model("town-1") is None

    async def test_active_targets_distinct_and_capped(self):
        rows = [{"town_ref": t} for t in ("a", "b", "a", None, "c", "d")]
        conn = _make_conn(fetch=rows)
        provider = PgPulseProvider(_make_pool(conn))

        targets = await provider.list_active_targets(3)

        assert targets == [ScheduleTarget("a"), ScheduleTarget("b"), ScheduleTarget("c")]
        assert conn.fetch.call_args.args[1] == 4000


# ---------------------------------------------------------------------------
# 3. FilePulseProvider
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestFilePulseProvider:
    async def test_model_lookup_per_owner(self, tmp_path):
        _write(tmp_path / "owner-1" / "town_pulse_models.json", [
            {"townRef": "town-2", "model": {"eventEnergy": "medium"}},
            {"townRef": "town-1", "model": _MODEL},
        ])
        provider = FilePulseProvider(tmp_path)

        assert (await provider.get_demand_model("town-1", owner_id="owner-1")).event_energy == "high"
        assert await provider.get_demand_model("town-1", owner_id="owner-2") is None
        assert await provider.get_demand_model("town-1") is None

    async def test_signals_newest_first(self, tmp_path):
        _write(tmp_path / "owner-a" / "town_pulse_signals.json", [
            {"townRef": "old", "createdAt": "2026-03-01T10:00:00Z"},
            {"townRef": "fresh", "createdAt": "2026-03-04T10:00:00Z"},
            {"townRef": "old", "createdAt": "2026-03-02T10:00:00Z"},
            {"townRef": "broken", "createdAt": "yesterday"},
        ])
        _write(tmp_path / "owner-b" / "town_pulse_signals.json", [
            {"townRef": "mid", "createdAt": "2026-03-03T10:00:00+00:00"},
        ])
        provider = FilePulseProvider(tmp_path)

        targets = await provider.list_active_targets(10)

        assert targets == [
            ScheduleTarget("fresh", "owner-a"),
            ScheduleTarget("mid", "owner-b"),
            ScheduleTarget("old", "owner-a"),
        ]
        assert len(await provider.list_active_targets(1)) == 1

    async def test_missing_root_is_empty(self, tmp_path):
        provider = FilePulseProvider(tmp_path / "nothing-here")
        assert await provider.list_active_targets(5) == []

    async def test_corrupt_file_raises_store_failure(self, tmp_path):
        path = tmp_path / "owner-1" / "town_pulse_models.json"
        path.parent.mkdir(parents=True)
        path.write_text("{oops", encoding="utf-8")
        provider = FilePulseProvider(tmp_path)

        with pytest.raises(StoreFailure):
            await provider.get_demand_model("town-1", owner_id="owner-1")
