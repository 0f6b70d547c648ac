"""
Graph-suggestion recompute job.

Finds towns whose suggestion sets are missing or older than
settings.graph_suggestion_stale_hours and rewrites one template
suggestion set per category with outgoing edges.

Entry point:
    async def run_suggestion_recompute(store, feed, limit=None)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from services.townintel.config import settings
from services.townintel.graph.models import ScheduleTarget
from services.townintel.graph.service import TownGraphService
from services.townintel.jobs.runner import bootstrap, job_context, run_targets
from services.townintel.pulse.provider import ActiveSignalFeed
from services.townintel.scheduling.targets import suggestion_scheduler
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)


async def run_suggestion_recompute(
    store: GraphStore,
    feed: ActiveSignalFeed,
    limit: int | None = None,
) -> dict[str, Any]:
    scheduler = suggestion_scheduler(store, feed)
    targets = await scheduler.list_due_targets(limit or settings.job_target_limit)
    service = TownGraphService(store)

    async def _recompute(target: ScheduleTarget) -> None:
        await service.recompute_town_suggestions(target.town_id, owner_id=target.owner_id)

    stats = await run_targets("suggestion_job", targets, _recompute)
    return stats.as_dict()


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Standalone entry point for running from cron or a scheduled job."""
    bootstrap()
    async with job_context() as ctx:
        result = await run_suggestion_recompute(ctx.store, ctx.pulse)
        print(f"suggestion_job complete: {result}")


if __name__ == "__main__":
    asyncio.run(main())
