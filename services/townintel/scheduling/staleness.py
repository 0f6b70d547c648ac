"""
Generic "over-sample, dedup, check staleness, early-exit" scheduler.

There is no global index of towns. Candidates are discovered from an
ordered list of sources:

    1. the primary source (active signal feed) is asked for 3 x limit
    2. secondary sources are consulted only while the pool is < limit,
       each asked for 2 x limit

Dedup key depends on storage topology: town_id when storage is shared,
(owner_id, town_id) when each owner has a private partition.

A candidate is due when its last computation is unknown, or when
now - last > threshold (strict). Without a staleness getter every
discovered candidate is due.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Hashable, Protocol, Sequence

from services.townintel.graph.models import ScheduleTarget

logger = logging.getLogger(__name__)

MAX_DUE_LIMIT = 100
PRIMARY_OVERSAMPLE = 3
SECONDARY_OVERSAMPLE = 2

StalenessGetter = Callable[[ScheduleTarget], Awaitable[datetime | None]]
DedupKey = Callable[[ScheduleTarget], Hashable]


class CandidateSource(Protocol):
    name: str

    async def list_candidates(self, limit: int) -> list[ScheduleTarget]: ...


def is_stale(
    computed_at: datetime | None,
    threshold_hours: float,
    now: datetime | None = None,
) -> bool:
    if computed_at is None:
        return True
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    if computed_at.tzinfo is None:
        computed_at = computed_at.replace(tzinfo=timezone.utc)
    return current - computed_at > timedelta(hours=threshold_hours)


def town_key(target: ScheduleTarget) -> Hashable:
    return target.town_id


def owner_town_key(target: ScheduleTarget) -> Hashable:
    return (target.owner_id or "", target.town_id)


def dedup_key_for(shared_topology: bool) -> DedupKey:
    return town_key if shared_topology else owner_town_key


def clamp_limit(limit: int) -> int:
    return max(1, min(MAX_DUE_LIMIT, int(limit)))


class StalenessScheduler:
    def __init__(
        self,
        name: str,
        sources: Sequence[CandidateSource],
        staleness_getter: StalenessGetter | None,
        threshold_hours: float | None,
        dedup_key: DedupKey = town_key,
    ) -> None:
        if not sources:
            raise ValueError("at least one candidate source is required")
        if staleness_getter is not None and threshold_hours is None:
            raise ValueError("threshold_hours is required with a staleness getter")
        self.name = name
        self._sources = list(sources)
        self._staleness_getter = staleness_getter
        self._threshold_hours = threshold_hours
        self._dedup_key = dedup_key

    async def discover(self, limit: int) -> list[ScheduleTarget]:
        """Deduplicated candidates in discovery order (before staleness checks)."""
        cap = clamp_limit(limit)
        seen: set[Hashable] = set()
        pool: list[ScheduleTarget] = []

        for index, source in enumerate(self._sources):
            if index > 0 and len(pool) >= cap:
                break
            ask = cap * (PRIMARY_OVERSAMPLE if index == 0 else SECONDARY_OVERSAMPLE)
            found = await source.list_candidates(ask)
            added = 0
            for target in found:
                key = self._dedup_key(target)
                if key in seen:
                    continue
                seen.add(key)
                pool.append(target)
                added += 1
            logger.debug("%s: source=%s returned=%d new=%d", self.name, source.name, len(found), added)

        return pool

    async def list_due_targets(self, limit: int, now: datetime | None = None) -> list[ScheduleTarget]:
        cap = clamp_limit(limit)
        candidates = await self.discover(cap)

        due: list[ScheduleTarget] = []
        for target in candidates:
            if self._staleness_getter is None:
                due.append(target)
            else:
                last = await self._staleness_getter(target)
                if is_stale(last, self._threshold_hours, now):
                    due.append(target)
            if len(due) >= cap:
                break

        logger.info("%s: %d candidate(s), %d due", self.name, len(candidates), len(due))
        return due
