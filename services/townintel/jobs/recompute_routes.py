"""
Micro-route recompute job.

Finds towns whose route sets are missing, incomplete (fewer than one set
per window), or older than settings.micro_route_stale_hours, and re-ranks
every window for each.

Towns discovered only through graph activity may have no town row yet.
Those are skipped (logged, not counted) until the row exists.

Entry point:
    async def run_route_recompute(store, feed, demand_provider, limit=None)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from services.townintel.config import settings
from services.townintel.errors import StoreFailure
from services.townintel.graph.models import ScheduleTarget
from services.townintel.jobs.runner import bootstrap, job_context, run_targets
from services.townintel.pulse.provider import ActiveSignalFeed, DemandModelProvider
from services.townintel.ranking.service import MicroRouteService
from services.townintel.scheduling.targets import route_scheduler
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)


async def _has_town_row(store: GraphStore, target: ScheduleTarget) -> bool:
    try:
        return await store.get_town(target.town_id, owner_id=target.owner_id) is not None
    except StoreFailure:
        # Keep it; the worker hits the same error and reports it.
        return True


async def run_route_recompute(
    store: GraphStore,
    feed: ActiveSignalFeed,
    demand_provider: DemandModelProvider | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    scheduler = route_scheduler(store, feed)
    due = await scheduler.list_due_targets(limit or settings.job_target_limit)
    targets = [target for target in due if await _has_town_row(store, target)]
    if len(targets) < len(due):
        logger.info("route_job: skipped %d town(s) without a town row", len(due) - len(targets))
    service = MicroRouteService(store, demand_provider=demand_provider)

    async def _recompute(target: ScheduleTarget) -> None:
        await service.recompute_town_routes(target.town_id, owner_id=target.owner_id)

    stats = await run_targets("route_job", targets, _recompute)
    return stats.as_dict()


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Standalone entry point for running from cron or a scheduled job."""
    bootstrap()
    async with job_context() as ctx:
        result = await run_route_recompute(ctx.store, ctx.pulse, ctx.pulse)
        print(f"route_job complete: {result}")


if __name__ == "__main__":
    asyncio.run(main())
