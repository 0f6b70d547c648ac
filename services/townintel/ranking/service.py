"""
MicroRouteService: persisted route sets per (town, window).

Two entry styles, two error policies:

  recompute_town_routes()           user-invoked or scheduled; propagates
                                    StoreFailure and NotFound
  get_or_recompute_window_routes()  called from other features; a missing
                                    or stale set is recomputed best-effort
                                    and any failure degrades to None

A recompute reads one snapshot (edges, demand model, season overlay) and
writes one route set per window. It is not transactional across windows;
an edge increment that lands mid-recompute shows up in the next one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from services.townintel.config import settings
from services.townintel.errors import NotFound, TownIntelError
from services.townintel.feedback.loop import try_enrich
from services.townintel.graph.models import DemandModel, RouteSet, SeasonTag
from services.townintel.graph.windows import WINDOWS, Window, parse_window
from services.townintel.pulse.provider import DemandModelProvider
from services.townintel.ranking.routes import rank_window
from services.townintel.ranking.season import detect_season_state
from services.townintel.realtime.throttle import RecomputeThrottle
from services.townintel.scheduling.staleness import is_stale
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)


class MicroRouteService:
    def __init__(
        self,
        store: GraphStore,
        demand_provider: DemandModelProvider | None = None,
        throttle: RecomputeThrottle | None = None,
        stale_hours: float | None = None,
        routes_per_window: int | None = None,
    ) -> None:
        self._store = store
        self._demand_provider = demand_provider
        self._throttle = throttle or RecomputeThrottle(None)
        self._stale_hours = settings.micro_route_stale_hours if stale_hours is None else stale_hours
        self._routes_per_window = routes_per_window or settings.routes_per_window

    async def load_demand_model(self, town_id: str, owner_id: str | None = None) -> DemandModel | None:
        """Demand model or None. Provider failures degrade to no model."""
        if self._demand_provider is None:
            return None
        try:
            return await self._demand_provider.get_demand_model(town_id, owner_id=owner_id)
        except Exception:
            logger.warning("route_recompute: demand model unavailable for town=%s", town_id, exc_info=True)
            return None

    async def recompute_town_routes(
        self,
        town_id: str,
        owner_id: str | None = None,
        now: datetime | None = None,
        season_override: SeasonTag | None = None,
    ) -> dict[str, int]:
        """Re-rank every window for a town and replace each route set.

        Raises:
            NotFound: the town does not exist in this owner's scope.
            StoreFailure: the backend failed.
        """
        stamp = now or datetime.now(timezone.utc)

        town = await self._store.get_town(town_id, owner_id=owner_id)
        if town is None:
            raise NotFound(f"unknown town: {town_id}")

        edges = await self._store.list_edges(town_id, owner_id=owner_id)
        demand = await self.load_demand_model(town_id, owner_id=owner_id)
        deltas = await self._store.list_season_deltas(town_id, owner_id=owner_id)
        seasons = await self._store.list_seasons(town_id, owner_id=owner_id)
        detected = detect_season_state(
            town.timezone, now=stamp, custom_seasons=seasons, override=season_override
        )

        updated = 0
        for window in WINDOWS:
            routes = rank_window(
                edges,
                window,
                demand=demand,
                season_deltas=deltas,
                season_tags=detected.season_tags,
                limit=self._routes_per_window,
            )
            await self._store.replace_route_set(
                town_id, window, routes, owner_id=owner_id, computed_at=stamp
            )
            updated += 1

        logger.info(
            "route_recompute: town=%s edges=%d windows=%d seasons=%s",
            town_id,
            len(edges),
            updated,
            ",".join(tag.value for tag in detected.season_tags),
        )
        return {"updated": updated}

    async def get_window_routes(
        self,
        town_id: str,
        window: Window | str,
        owner_id: str | None = None,
    ) -> RouteSet | None:
        return await self._store.get_route_set(town_id, parse_window(window), owner_id=owner_id)

    async def get_or_recompute_window_routes(
        self,
        town_id: str,
        window: Window | str,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> RouteSet | None:
        """Route set for a window, recomputing when missing or stale.

        A malformed window raises InvalidInput. Everything else degrades:
        store errors and unknown towns return None, a throttled or failed
        recompute returns whatever set already exists.
        """
        resolved = parse_window(window)
        try:
            row = await self._store.get_route_set(town_id, resolved, owner_id=owner_id)
        except TownIntelError:
            logger.warning("route_lookup: read failed for town=%s", town_id, exc_info=True)
            return None

        if row is not None and not is_stale(row.computed_at, self._stale_hours, now):
            return row

        if not await self._throttle.allow(town_id, owner_id):
            return row

        result = await try_enrich(
            lambda: self.recompute_town_routes(town_id, owner_id=owner_id, now=now),
            "route_recompute",
        )
        if not result.ok:
            return row

        try:
            return await self._store.get_route_set(town_id, resolved, owner_id=owner_id)
        except TownIntelError:
            logger.warning("route_lookup: re-read failed for town=%s", town_id, exc_info=True)
            return row
