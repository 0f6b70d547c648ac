"""
Shared plumbing for the recompute jobs.

job_context() builds the process-wide backends once (store, pulse provider,
asyncpg pool for the relational topology) and closes them on exit.

run_targets() fans a worker out over due targets with an asyncio.Semaphore.
Towns are independent: one failure is logged, reported to Sentry, counted,
and never stops the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

import asyncpg
from dotenv import load_dotenv

from services.townintel.config import Settings, settings as default_settings
from services.townintel.graph.models import ScheduleTarget
from services.townintel.observability import capture_job_failure, setup_sentry
from services.townintel.pulse.provider import FilePulseProvider, PgPulseProvider
from services.townintel.storage.base import GraphStore
from services.townintel.storage.factory import create_store

logger = logging.getLogger(__name__)

Worker = Callable[[ScheduleTarget], Awaitable[Any]]


@dataclass
class JobStats:
    job: str
    targets: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "targets": self.targets,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }


@dataclass
class JobContext:
    config: Settings
    store: GraphStore
    pulse: FilePulseProvider | PgPulseProvider


@asynccontextmanager
async def job_context(config: Settings | None = None) -> AsyncIterator[JobContext]:
    config = config or default_settings
    store = create_store(config)
    pool = None
    try:
        if config.storage_backend == "sql":
            pool = await asyncpg.create_pool(config.database_url, min_size=1, max_size=3)
            pulse: FilePulseProvider | PgPulseProvider = PgPulseProvider(pool)
        else:
            pulse = FilePulseProvider(config.data_dir)
        yield JobContext(config=config, store=store, pulse=pulse)
    finally:
        if pool is not None:
            await pool.close()
        await store.close()


async def run_targets(
    job: str,
    targets: Sequence[ScheduleTarget],
    worker: Worker,
    concurrency: int | None = None,
) -> JobStats:
    stats = JobStats(job=job, targets=len(targets))
    semaphore = asyncio.Semaphore(max(1, concurrency or default_settings.job_concurrency))
    start = time.monotonic()

    async def _run_one(target: ScheduleTarget) -> None:
        async with semaphore:
            try:
                await worker(target)
                stats.succeeded += 1
            except Exception as exc:
                stats.failed += 1
                stats.errors.append(f"{target.town_id}: {exc}")
                logger.error("%s: town=%s failed: %s", job, target.town_id, exc, exc_info=True)
                capture_job_failure(exc, job=job, town_id=target.town_id, owner_id=target.owner_id)

    await asyncio.gather(*(_run_one(target) for target in targets))

    stats.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "%s: complete targets=%d succeeded=%d failed=%d duration_ms=%d",
        job,
        stats.targets,
        stats.succeeded,
        stats.failed,
        stats.duration_ms,
    )
    return stats


def bootstrap() -> None:
    """Process setup shared by every job entry point."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    setup_sentry()
