"""
Candidate sources and the concrete due-target schedulers.

    routes       active signals, then recent graph edges; 28h threshold;
                 a town with fewer than one route set per window is due
    suggestions  active signals, then recent graph edges; 22h threshold
    seasons      active signals, then recent operator seasons; no
                 staleness check, every discovered town is due
"""

from __future__ import annotations

from datetime import datetime

from services.townintel.config import Settings, settings as default_settings
from services.townintel.graph.models import ScheduleTarget
from services.townintel.graph.windows import WINDOWS
from services.townintel.pulse.provider import ActiveSignalFeed
from services.townintel.scheduling.staleness import StalenessScheduler, dedup_key_for
from services.townintel.storage.base import GraphStore


class ActiveSignalSource:
    name = "active_signals"

    def __init__(self, feed: ActiveSignalFeed) -> None:
        self._feed = feed

    async def list_candidates(self, limit: int) -> list[ScheduleTarget]:
        return await self._feed.list_active_targets(limit)


class RecentGraphSource:
    name = "recent_graph"

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def list_candidates(self, limit: int) -> list[ScheduleTarget]:
        return await self._store.list_recent_graph_targets(limit)


class RecentSeasonSource:
    name = "recent_seasons"

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def list_candidates(self, limit: int) -> list[ScheduleTarget]:
        return await self._store.list_recent_season_targets(limit)


def route_scheduler(
    store: GraphStore,
    feed: ActiveSignalFeed,
    config: Settings | None = None,
) -> StalenessScheduler:
    config = config or default_settings

    async def last_route_computation(target: ScheduleTarget) -> datetime | None:
        count, latest = await store.route_status(target.town_id, owner_id=target.owner_id)
        # Missing windows count as never computed
        if count < len(WINDOWS):
            return None
        return latest

    return StalenessScheduler(
        name="route_targets",
        sources=[ActiveSignalSource(feed), RecentGraphSource(store)],
        staleness_getter=last_route_computation,
        threshold_hours=config.micro_route_stale_hours,
        dedup_key=dedup_key_for(store.shared_topology),
    )


def suggestion_scheduler(
    store: GraphStore,
    feed: ActiveSignalFeed,
    config: Settings | None = None,
) -> StalenessScheduler:
    config = config or default_settings

    async def last_suggestion_computation(target: ScheduleTarget) -> datetime | None:
        return await store.latest_suggestion_computed_at(target.town_id, owner_id=target.owner_id)

    return StalenessScheduler(
        name="suggestion_targets",
        sources=[ActiveSignalSource(feed), RecentGraphSource(store)],
        staleness_getter=last_suggestion_computation,
        threshold_hours=config.graph_suggestion_stale_hours,
        dedup_key=dedup_key_for(store.shared_topology),
    )


def season_scheduler(store: GraphStore, feed: ActiveSignalFeed) -> StalenessScheduler:
    return StalenessScheduler(
        name="season_targets",
        sources=[ActiveSignalSource(feed), RecentSeasonSource(store)],
        staleness_getter=None,
        threshold_hours=None,
        dedup_key=dedup_key_for(store.shared_topology),
    )
