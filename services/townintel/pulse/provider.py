"""
Town Pulse inputs: the demand model and the active-signal feed.

Both are owned by the Town Pulse subsystem; this package only reads them.

    DemandModelProvider.get_demand_model(town_id, owner_id) -> DemandModel | None
    ActiveSignalFeed.list_active_targets(limit) -> [ScheduleTarget]

The stored model JSON uses the pulse wire shape:

    {
        "busyWindows":    [{"dow": 5, "hour": 17}, ...],
        "slowWindows":    [{"dow": 2, "hour": 14}, ...],
        "categoryTrends": [{"category": "cafe", "trend": "up"}, ...],
        "eventEnergy":    "low" | "medium" | "high",
        "seasonalNotes":  str
    }

Pulse uses "mixed" where the graph uses "other"; parse_category() maps it.
Unknown categories and malformed slots are dropped, not raised.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from services.townintel.errors import StoreFailure
from services.townintel.graph.models import DemandModel, DemandSlot, ScheduleTarget, Trend
from services.townintel.graph.taxonomy import Category, parse_category

logger = logging.getLogger(__name__)

# Rows scanned when collapsing the signal feed into distinct towns
_SIGNAL_SCAN_LIMIT = 4000


class DemandModelProvider(Protocol):
    async def get_demand_model(self, town_id: str, owner_id: str | None = None) -> DemandModel | None: ...


class ActiveSignalFeed(Protocol):
    async def list_active_targets(self, limit: int) -> list[ScheduleTarget]: ...


# ---------------------------------------------------------------------------
# Wire shape -> DemandModel
# ---------------------------------------------------------------------------


def _parse_slots(raw: Any) -> tuple[DemandSlot, ...]:
    slots: list[DemandSlot] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        dow, hour = item.get("dow"), item.get("hour")
        if not isinstance(dow, int) or not isinstance(hour, int):
            continue
        if 0 <= dow <= 6 and 0 <= hour <= 23:
            slots.append(DemandSlot(day_of_week=dow, hour=hour))
    return tuple(slots)


def _parse_trends(raw: Any) -> dict[Category, Trend]:
    trends: dict[Category, Trend] = {}
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        category = parse_category(item.get("category"))
        if category is None:
            continue
        try:
            trends[category] = Trend(str(item.get("trend", "")).lower())
        except ValueError:
            continue
    return trends


def parse_demand_model(raw: Any) -> DemandModel | None:
    """Convert a stored pulse model document into a DemandModel."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    if not isinstance(raw, dict):
        return None

    defaults = DemandModel()
    event_energy = raw.get("eventEnergy")
    seasonal_notes = raw.get("seasonalNotes")
    return DemandModel(
        busy_slots=_parse_slots(raw.get("busyWindows")),
        slow_slots=_parse_slots(raw.get("slowWindows")),
        category_trends=_parse_trends(raw.get("categoryTrends")),
        event_energy=event_energy if event_energy in ("low", "medium", "high") else defaults.event_energy,
        seasonal_notes=seasonal_notes if isinstance(seasonal_notes, str) and seasonal_notes else defaults.seasonal_notes,
    )


# ---------------------------------------------------------------------------
# Postgres (asyncpg)
# ---------------------------------------------------------------------------

_LATEST_MODEL_SQL = """
SELECT model
FROM town_pulse_models
WHERE town_ref = $1
ORDER BY computed_at DESC
LIMIT 1
"""

_RECENT_SIGNAL_TOWNS_SQL = """
SELECT town_ref, created_at
FROM town_pulse_signals
ORDER BY created_at DESC
LIMIT $1
"""


class PgPulseProvider:
    """Reads pulse tables from the shared schema. owner_id is ignored."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def get_demand_model(self, town_id: str, owner_id: str | None = None) -> DemandModel | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(_LATEST_MODEL_SQL, town_id)
        if row is None:
            return None
        return parse_demand_model(row["model"])

    async def list_active_targets(self, limit: int) -> list[ScheduleTarget]:
        cap = max(1, limit)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(_RECENT_SIGNAL_TOWNS_SQL, _SIGNAL_SCAN_LIMIT)

        seen: set[str] = set()
        targets: list[ScheduleTarget] = []
        for row in rows:
            town_ref = row["town_ref"]
            if not town_ref or town_ref in seen:
                continue
            seen.add(town_ref)
            targets.append(ScheduleTarget(town_id=town_ref))
            if len(targets) >= cap:
                break
        return targets


# ---------------------------------------------------------------------------
# Local files
# ---------------------------------------------------------------------------


def _safe_segment(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", value)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class FilePulseProvider:
    """
    Reads {data_dir}/{owner}/town_pulse_models.json and town_pulse_signals.json.

    Rows use the pulse camelCase keys (townRef, computedAt, createdAt).
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _read_array(self, path: Path) -> list[dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreFailure(f"could not read {path.name}") from exc
        return [row for row in raw if isinstance(row, dict)] if isinstance(raw, list) else []

    async def get_demand_model(self, town_id: str, owner_id: str | None = None) -> DemandModel | None:
        if not owner_id:
            return None
        rows = self._read_array(self._root / _safe_segment(owner_id) / "town_pulse_models.json")
        row = next((r for r in rows if r.get("townRef") == town_id), None)
        return parse_demand_model(row.get("model")) if row else None

    async def list_active_targets(self, limit: int) -> list[ScheduleTarget]:
        cap = max(1, limit)
        try:
            owners = sorted(entry.name for entry in self._root.iterdir() if entry.is_dir())
        except FileNotFoundError:
            return []

        found: list[tuple[datetime, ScheduleTarget]] = []
        for owner in owners:
            latest_by_town: dict[str, datetime] = {}
            for signal in self._read_array(self._root / owner / "town_pulse_signals.json"):
                town_ref = signal.get("townRef")
                created = _parse_timestamp(signal.get("createdAt"))
                if not isinstance(town_ref, str) or not town_ref or created is None:
                    continue
                if town_ref not in latest_by_town or created > latest_by_town[town_ref]:
                    latest_by_town[town_ref] = created
            for town_ref, latest in latest_by_town.items():
                found.append((latest, ScheduleTarget(town_id=town_ref, owner_id=owner)))

        found.sort(key=lambda item: item[0], reverse=True)
        return [target for _, target in found[:cap]]
