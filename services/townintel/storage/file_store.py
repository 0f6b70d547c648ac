"""
File-per-tenant JSON GraphStore ("local mode").

Layout:
    {data_dir}/{owner}/towns.json
    {data_dir}/{owner}/town_graph_edges.json
    {data_dir}/{owner}/town_route_season_weights.json
    {data_dir}/{owner}/town_seasons.json
    {data_dir}/{owner}/town_micro_routes.json
    {data_dir}/{owner}/town_graph_suggestions.json
    {data_dir}/{owner}/brand_partners.json

Each file is a JSON array. Writes go to a temp file in the same directory
followed by os.replace(), so readers never see a half-written array.

Every read-modify-write cycle holds a per-file asyncio.Lock, so concurrent
upserts on one event loop never drop each other's rows.

A file that parses as JSON but fails row validation reads as empty and is
logged. Writers refuse to touch such a file (StoreFailure) rather than
replace it with a truncated array. A file that is not JSON at all is a
StoreFailure for readers and writers alike.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from services.townintel.errors import InvalidInput, StoreFailure
from services.townintel.graph.models import (
    BrandPartner,
    EdgeMode,
    GraphEdge,
    RouteCandidate,
    RouteSet,
    ScheduleTarget,
    SeasonWeightDelta,
    SuggestionSet,
    Town,
    TownSeason,
)
from services.townintel.graph.taxonomy import Category
from services.townintel.graph.windows import Window
from services.townintel.storage.base import GraphStore, next_edge_weight, sort_edges

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_TOWNS_FILE = "towns.json"
_EDGES_FILE = "town_graph_edges.json"
_DELTAS_FILE = "town_route_season_weights.json"
_SEASONS_FILE = "town_seasons.json"
_ROUTES_FILE = "town_micro_routes.json"
_SUGGESTIONS_FILE = "town_graph_suggestions.json"
_PARTNERS_FILE = "brand_partners.json"

# Newest rows kept per file
_EDGE_CAP = 3000
_ROUTE_CAP = 1500
_SUGGESTION_CAP = 1500
_SEASON_CAP = 2000
_PARTNER_CAP = 2000


def _safe_segment(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileGraphStore(GraphStore):
    shared_topology = False

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._locks: dict[Path, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _path(self, owner_id: str, filename: str) -> Path:
        return self._root / _safe_segment(owner_id) / filename

    def _lock(self, path: Path) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        return lock

    def _require_owner(self, owner_id: str | None) -> str:
        if not owner_id:
            raise InvalidInput("owner_id is required for file-backed storage")
        return owner_id

    def _read_raw(self, path: Path) -> Any:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreFailure(f"could not read {path.name}") from exc

    def _read_rows(self, path: Path, model: type[M], for_write: bool = False) -> list[M]:
        raw = self._read_raw(path)
        if raw is None:
            return []
        try:
            return TypeAdapter(list[model]).validate_python(raw)
        except ValidationError as exc:
            if for_write:
                logger.error("file_store: %s failed validation, refusing to overwrite", path)
                raise StoreFailure(f"{path.name} holds invalid rows") from exc
            logger.warning("file_store: %s failed validation, treating as empty", path)
            return []

    def _write_rows(self, path: Path, rows: list[BaseModel], cap: int | None = None) -> None:
        kept = rows[-cap:] if cap else rows
        payload = [row.model_dump(mode="json") for row in kept]
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                    f.write("\n")
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreFailure(f"could not write {path.name}") from exc

    def _owner_dirs(self) -> list[str]:
        try:
            return sorted(entry.name for entry in self._root.iterdir() if entry.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StoreFailure("could not list owner directories") from exc

    # ------------------------------------------------------------------
    # Towns
    # ------------------------------------------------------------------

    async def get_town(self, town_id: str, owner_id: str | None = None) -> Town | None:
        if not owner_id:
            return None
        rows = self._read_rows(self._path(owner_id, _TOWNS_FILE), Town)
        return next((row for row in rows if row.id == town_id), None)

    async def upsert_town(self, town: Town, owner_id: str | None = None) -> Town:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _TOWNS_FILE)
        async with self._lock(path):
            rows = [row for row in self._read_rows(path, Town, for_write=True) if row.id != town.id]
            rows.append(town)
            self._write_rows(path, rows)
        return town

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def get_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        owner_id: str | None = None,
    ) -> GraphEdge | None:
        if not owner_id:
            return None
        rows = self._read_rows(self._path(owner_id, _EDGES_FILE), GraphEdge)
        return next(
            (
                row for row in rows
                if row.town_id == town_id
                and row.from_category == from_category
                and row.to_category == to_category
            ),
            None,
        )

    async def _write_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        weight: float,
        mode: EdgeMode,
        now: datetime | None,
        owner_id: str | None,
    ) -> GraphEdge | None:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _EDGES_FILE)
        stamp = now or _utcnow()

        async with self._lock(path):
            rows = self._read_rows(path, GraphEdge, for_write=True)
            index = next(
                (
                    i for i, row in enumerate(rows)
                    if row.town_id == town_id
                    and row.from_category == from_category
                    and row.to_category == to_category
                ),
                -1,
            )
            if index >= 0:
                current = rows[index]
                edge = current.model_copy(update={
                    "weight": next_edge_weight(current.weight, weight, mode),
                    "updated_at": stamp,
                })
                rows[index] = edge
            else:
                edge = GraphEdge(
                    town_id=town_id,
                    from_category=from_category,
                    to_category=to_category,
                    weight=next_edge_weight(None, weight, mode),
                    updated_at=stamp,
                )
                rows.append(edge)

            self._write_rows(path, rows, cap=_EDGE_CAP)
        return edge

    async def list_edges(self, town_id: str, owner_id: str | None = None) -> list[GraphEdge]:
        if not owner_id:
            return []
        rows = self._read_rows(self._path(owner_id, _EDGES_FILE), GraphEdge)
        return sort_edges([row for row in rows if row.town_id == town_id])

    # ------------------------------------------------------------------
    # Season overlay
    # ------------------------------------------------------------------

    async def add_season_delta(
        self, delta: SeasonWeightDelta, owner_id: str | None = None
    ) -> SeasonWeightDelta:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _DELTAS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, SeasonWeightDelta, for_write=True)
            rows.append(delta)
            self._write_rows(path, rows, cap=_SEASON_CAP)
        return delta

    async def list_season_deltas(
        self,
        town_id: str,
        window: Window | None = None,
        owner_id: str | None = None,
    ) -> list[SeasonWeightDelta]:
        if not owner_id:
            return []
        rows = self._read_rows(self._path(owner_id, _DELTAS_FILE), SeasonWeightDelta)
        matching = [
            row for row in rows
            if row.town_id == town_id and (window is None or row.window == window)
        ]
        return sorted(matching, key=lambda row: row.created_at, reverse=True)

    async def delete_season_delta(
        self, town_id: str, delta_id: str, owner_id: str | None = None
    ) -> bool:
        if not owner_id:
            return False
        path = self._path(owner_id, _DELTAS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, SeasonWeightDelta, for_write=True)
            kept = [row for row in rows if not (row.town_id == town_id and row.id == delta_id)]
            if len(kept) == len(rows):
                return False
            self._write_rows(path, kept)
        return True

    async def upsert_season(self, season: TownSeason, owner_id: str | None = None) -> TownSeason:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _SEASONS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, TownSeason, for_write=True)
            index = next(
                (
                    i for i, row in enumerate(rows)
                    if row.town_id == season.town_id and row.season_key == season.season_key
                ),
                -1,
            )
            if index >= 0:
                # Keep the original identity and creation time
                season = season.model_copy(update={
                    "id": rows[index].id,
                    "created_at": rows[index].created_at,
                })
                rows[index] = season
            else:
                rows.append(season)
            self._write_rows(path, rows, cap=_SEASON_CAP)
        return season

    async def list_seasons(self, town_id: str, owner_id: str | None = None) -> list[TownSeason]:
        if not owner_id:
            return []
        rows = self._read_rows(self._path(owner_id, _SEASONS_FILE), TownSeason)
        return sorted(
            (row for row in rows if row.town_id == town_id),
            key=lambda row: row.season_key.value,
        )

    async def delete_season(
        self, town_id: str, season_key: str, owner_id: str | None = None
    ) -> bool:
        if not owner_id:
            return False
        path = self._path(owner_id, _SEASONS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, TownSeason, for_write=True)
            kept = [
                row for row in rows
                if not (row.town_id == town_id and row.season_key.value == season_key)
            ]
            if len(kept) == len(rows):
                return False
            self._write_rows(path, kept)
        return True

    # ------------------------------------------------------------------
    # Derived artifacts
    # ------------------------------------------------------------------

    async def replace_route_set(
        self,
        town_id: str,
        window: Window,
        routes: list[RouteCandidate],
        owner_id: str | None = None,
        computed_at: datetime | None = None,
    ) -> RouteSet | None:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _ROUTES_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, RouteSet, for_write=True)
            index = next(
                (i for i, row in enumerate(rows) if row.town_id == town_id and row.window == window),
                -1,
            )
            row_kwargs: dict[str, Any] = {
                "town_id": town_id,
                "window": window,
                "routes": list(routes),
                "computed_at": computed_at or _utcnow(),
            }
            if index >= 0:
                row_kwargs["id"] = rows[index].id
            route_set = RouteSet(**row_kwargs)
            if index >= 0:
                rows[index] = route_set
            else:
                rows.append(route_set)
            self._write_rows(path, rows, cap=_ROUTE_CAP)
        return route_set

    async def get_route_set(
        self, town_id: str, window: Window, owner_id: str | None = None
    ) -> RouteSet | None:
        if not owner_id:
            return None
        rows = self._read_rows(self._path(owner_id, _ROUTES_FILE), RouteSet)
        return next(
            (row for row in rows if row.town_id == town_id and row.window == window),
            None,
        )

    async def route_status(
        self, town_id: str, owner_id: str | None = None
    ) -> tuple[int, datetime | None]:
        if not owner_id:
            return 0, None
        rows = self._read_rows(self._path(owner_id, _ROUTES_FILE), RouteSet)
        matching = [row for row in rows if row.town_id == town_id]
        if not matching:
            return 0, None
        return len(matching), max(row.computed_at for row in matching)

    async def replace_suggestion_set(
        self, suggestion: SuggestionSet, owner_id: str | None = None
    ) -> SuggestionSet | None:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _SUGGESTIONS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, SuggestionSet, for_write=True)
            index = next(
                (
                    i for i, row in enumerate(rows)
                    if row.town_id == suggestion.town_id and row.category == suggestion.category
                ),
                -1,
            )
            if index >= 0:
                suggestion = suggestion.model_copy(update={"id": rows[index].id})
                rows[index] = suggestion
            else:
                rows.append(suggestion)
            self._write_rows(path, rows, cap=_SUGGESTION_CAP)
        return suggestion

    async def latest_suggestion_computed_at(
        self, town_id: str, owner_id: str | None = None
    ) -> datetime | None:
        if not owner_id:
            return None
        rows = self._read_rows(self._path(owner_id, _SUGGESTIONS_FILE), SuggestionSet)
        stamps = [row.computed_at for row in rows if row.town_id == town_id]
        return max(stamps) if stamps else None

    # ------------------------------------------------------------------
    # Explicit partners
    # ------------------------------------------------------------------

    async def upsert_partner(self, partner: BrandPartner, owner_id: str | None = None) -> BrandPartner:
        owner = self._require_owner(owner_id)
        path = self._path(owner, _PARTNERS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, BrandPartner, for_write=True)
            index = next(
                (
                    i for i, row in enumerate(rows)
                    if row.brand_id == partner.brand_id
                    and row.partner_brand_id == partner.partner_brand_id
                ),
                -1,
            )
            if index >= 0:
                partner = partner.model_copy(update={
                    "id": rows[index].id,
                    "created_at": rows[index].created_at,
                })
                rows[index] = partner
            else:
                rows.append(partner)
            self._write_rows(path, rows, cap=_PARTNER_CAP)
        return partner

    async def delete_partner(
        self, brand_id: str, partner_brand_id: str, owner_id: str | None = None
    ) -> bool:
        if not owner_id:
            return False
        path = self._path(owner_id, _PARTNERS_FILE)
        async with self._lock(path):
            rows = self._read_rows(path, BrandPartner, for_write=True)
            kept = [
                row for row in rows
                if not (row.brand_id == brand_id and row.partner_brand_id == partner_brand_id)
            ]
            if len(kept) == len(rows):
                return False
            self._write_rows(path, kept)
        return True

    async def list_partners(self, brand_id: str, owner_id: str | None = None) -> list[BrandPartner]:
        if not owner_id:
            return []
        rows = self._read_rows(self._path(owner_id, _PARTNERS_FILE), BrandPartner)
        return sorted(
            (row for row in rows if row.brand_id == brand_id),
            key=lambda row: row.created_at,
        )

    # ------------------------------------------------------------------
    # Discovery: directory scan
    # ------------------------------------------------------------------

    def _latest_by_owner_town(self, filename: str, model: type[M], stamp_field: str) -> list[tuple[datetime, ScheduleTarget]]:
        found: list[tuple[datetime, ScheduleTarget]] = []
        for owner in self._owner_dirs():
            latest_by_town: dict[str, datetime] = {}
            for row in self._read_rows(self._root / owner / filename, model):
                stamp = getattr(row, stamp_field)
                town_id = getattr(row, "town_id")
                if town_id not in latest_by_town or stamp > latest_by_town[town_id]:
                    latest_by_town[town_id] = stamp
            for town_id, stamp in latest_by_town.items():
                found.append((stamp, ScheduleTarget(town_id=town_id, owner_id=owner)))
        found.sort(key=lambda item: item[0], reverse=True)
        return found

    async def list_recent_graph_targets(self, limit: int) -> list[ScheduleTarget]:
        found = self._latest_by_owner_town(_EDGES_FILE, GraphEdge, "updated_at")
        return [target for _, target in found[: max(1, limit)]]

    async def list_recent_season_targets(self, limit: int) -> list[ScheduleTarget]:
        found = self._latest_by_owner_town(_SEASONS_FILE, TownSeason, "created_at")
        return [target for _, target in found[: max(1, limit)]]
