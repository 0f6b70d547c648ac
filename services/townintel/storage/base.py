"""
GraphStore: the single persistence interface the core is written against.

Two backends implement it (file-per-tenant JSON and SQLAlchemy/Postgres);
one is chosen at process start by storage.factory.create_store().

owner_id scoping:
  The file backend partitions every table per owner directory, so owner_id
  is required for writes and reads without it return nothing. The relational
  backend is shared across owners and ignores owner_id.

Every method raises StoreFailure on backend I/O errors.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime

from services.townintel.graph.models import (
    EDGE_WEIGHT_INPUT_MAX,
    EDGE_WEIGHT_MIN,
    EDGE_WEIGHT_STORAGE_MAX,
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


def clamp_input_weight(weight: float | None, default: float = 1.0) -> float:
    """Clamp a caller-supplied weight to [0.01, 1000]. Non-finite input uses default."""
    candidate = default
    if weight is not None:
        try:
            value = float(weight)
        except (TypeError, ValueError):
            value = math.nan
        if math.isfinite(value):
            candidate = value
    return max(EDGE_WEIGHT_MIN, min(EDGE_WEIGHT_INPUT_MAX, candidate))


def clamp_storage_weight(weight: float) -> float:
    """Storage-level ceiling. Operator-set edges may exceed the input range."""
    return max(EDGE_WEIGHT_MIN, min(EDGE_WEIGHT_STORAGE_MAX, weight))


def next_edge_weight(existing: float | None, weight: float, mode: EdgeMode) -> float:
    """Weight after an upsert. increment compounds, ensure never amplifies."""
    if existing is None:
        return clamp_storage_weight(weight)
    if mode is EdgeMode.ENSURE:
        return existing
    return clamp_storage_weight(existing + weight)


def sort_edges(edges: list[GraphEdge]) -> list[GraphEdge]:
    """Weight descending. Stable, so ties keep storage order."""
    return sorted(edges, key=lambda edge: edge.weight, reverse=True)


class GraphStore(ABC):
    """Abstract per-town graph, overlay, and derived-artifact store."""

    shared_topology: bool = False

    async def close(self) -> None:
        """Release backend resources. File storage holds none."""

    # -- towns -------------------------------------------------------------

    @abstractmethod
    async def get_town(self, town_id: str, owner_id: str | None = None) -> Town | None: ...

    @abstractmethod
    async def upsert_town(self, town: Town, owner_id: str | None = None) -> Town: ...

    # -- edges -------------------------------------------------------------

    @abstractmethod
    async def get_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        owner_id: str | None = None,
    ) -> GraphEdge | None: ...

    @abstractmethod
    async def _write_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        weight: float,
        mode: EdgeMode,
        now: datetime | None,
        owner_id: str | None,
    ) -> GraphEdge | None: ...

    async def upsert_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        weight: float | None = 1.0,
        mode: EdgeMode = EdgeMode.INCREMENT,
        *,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> GraphEdge | None:
        """Create or reinforce the (town, from, to) edge.

        Returns None when from == to; that is a defined no-op, not an error.
        """
        if from_category == to_category:
            return None
        return await self._write_edge(
            town_id,
            from_category,
            to_category,
            clamp_input_weight(weight),
            EdgeMode(mode),
            now,
            owner_id,
        )

    @abstractmethod
    async def list_edges(self, town_id: str, owner_id: str | None = None) -> list[GraphEdge]:
        """All edges for a town, sorted by weight descending."""

    async def top_edges_from(
        self,
        town_id: str,
        from_category: Category,
        limit: int = 3,
        owner_id: str | None = None,
    ) -> list[tuple[Category, float]]:
        cap = max(1, min(10, int(limit)))
        edges = await self.list_edges(town_id, owner_id=owner_id)
        outgoing = [edge for edge in edges if edge.from_category == from_category]
        return [(edge.to_category, edge.weight) for edge in sort_edges(outgoing)[:cap]]

    # -- season overlay ----------------------------------------------------

    @abstractmethod
    async def add_season_delta(
        self, delta: SeasonWeightDelta, owner_id: str | None = None
    ) -> SeasonWeightDelta: ...

    @abstractmethod
    async def list_season_deltas(
        self,
        town_id: str,
        window: Window | None = None,
        owner_id: str | None = None,
    ) -> list[SeasonWeightDelta]:
        """Deltas for a town (optionally one window), newest first."""

    @abstractmethod
    async def delete_season_delta(
        self, town_id: str, delta_id: str, owner_id: str | None = None
    ) -> bool: ...

    @abstractmethod
    async def upsert_season(self, season: TownSeason, owner_id: str | None = None) -> TownSeason: ...

    @abstractmethod
    async def list_seasons(self, town_id: str, owner_id: str | None = None) -> list[TownSeason]: ...

    @abstractmethod
    async def delete_season(
        self, town_id: str, season_key: str, owner_id: str | None = None
    ) -> bool: ...

    # -- derived artifacts -------------------------------------------------

    @abstractmethod
    async def replace_route_set(
        self,
        town_id: str,
        window: Window,
        routes: list[RouteCandidate],
        owner_id: str | None = None,
        computed_at: datetime | None = None,
    ) -> RouteSet | None:
        """Replace the ranked list for (town, window) wholesale."""

    @abstractmethod
    async def get_route_set(
        self, town_id: str, window: Window, owner_id: str | None = None
    ) -> RouteSet | None: ...

    @abstractmethod
    async def route_status(
        self, town_id: str, owner_id: str | None = None
    ) -> tuple[int, datetime | None]:
        """(number of window route sets, most recent computed_at)."""

    @abstractmethod
    async def replace_suggestion_set(
        self, suggestion: SuggestionSet, owner_id: str | None = None
    ) -> SuggestionSet | None: ...

    @abstractmethod
    async def latest_suggestion_computed_at(
        self, town_id: str, owner_id: str | None = None
    ) -> datetime | None: ...

    # -- explicit partners -------------------------------------------------

    @abstractmethod
    async def upsert_partner(self, partner: BrandPartner, owner_id: str | None = None) -> BrandPartner:
        """Create or update the (brand, partner) link, keeping its id and created_at."""

    @abstractmethod
    async def delete_partner(
        self, brand_id: str, partner_brand_id: str, owner_id: str | None = None
    ) -> bool: ...

    @abstractmethod
    async def list_partners(self, brand_id: str, owner_id: str | None = None) -> list[BrandPartner]:
        """Links saved for a brand, oldest first."""

    # -- discovery ---------------------------------------------------------

    @abstractmethod
    async def list_recent_graph_targets(self, limit: int) -> list[ScheduleTarget]:
        """Towns ordered by most recent edge activity, newest first."""

    @abstractmethod
    async def list_recent_season_targets(self, limit: int) -> list[ScheduleTarget]:
        """Towns ordered by most recent operator season row, newest first."""
