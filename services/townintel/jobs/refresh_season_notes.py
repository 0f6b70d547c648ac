"""
Season-note refresh job.

Every discovered town is processed (no staleness check): operator season
rows with blank notes get the default template for their tag.

Entry point:
    async def run_season_note_refresh(store, feed, limit=None)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from services.townintel.config import settings
from services.townintel.graph.models import ScheduleTarget
from services.townintel.jobs.runner import bootstrap, job_context, run_targets
from services.townintel.pulse.provider import ActiveSignalFeed
from services.townintel.ranking.season import refresh_season_note_templates
from services.townintel.scheduling.targets import season_scheduler
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)


async def run_season_note_refresh(
    store: GraphStore,
    feed: ActiveSignalFeed,
    limit: int | None = None,
) -> dict[str, Any]:
    scheduler = season_scheduler(store, feed)
    targets = await scheduler.list_due_targets(limit or settings.job_target_limit)

    async def _refresh(target: ScheduleTarget) -> None:
        await refresh_season_note_templates(store, target.town_id, owner_id=target.owner_id)

    stats = await run_targets("season_job", targets, _refresh)
    return stats.as_dict()


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Standalone entry point for running from cron or a scheduled job."""
    bootstrap()
    async with job_context() as ctx:
        result = await run_season_note_refresh(ctx.store, ctx.pulse)
        print(f"season_job complete: {result}")


if __name__ == "__main__":
    asyncio.run(main())
