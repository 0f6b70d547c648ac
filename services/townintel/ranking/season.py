"""
Season detection for a town, and the operator-notes template refresh.

Active tags for a local date:
    primary   Dec-Feb winter, Mar-May spring, Jun-Aug summer, else fall
    holiday   Nov 15 - Dec 31
    school    Aug 1 - May 25 (wraps the year)
    football  Aug 15 - Nov 30

Operator seasons (TownSeason rows) refine the automatic set:
    - a row whose date range contains today adds its tag and its notes
    - a row whose range excludes today suppresses its tag, even an auto tag
    - a missing bound is open-ended

An override tag is always added; a primary-season override also replaces
the reported primary season. Tags come back in SeasonTag declaration order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable

from services.townintel.graph.models import PRIMARY_SEASONS, SeasonTag, TownSeason
from services.townintel.graph.windows import zone_or_default
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)

# (start month, start day, end month, end day), inclusive
_AUTO_RANGES: dict[SeasonTag, tuple[int, int, int, int]] = {
    SeasonTag.HOLIDAY: (11, 15, 12, 31),
    SeasonTag.SCHOOL: (8, 1, 5, 25),
    SeasonTag.FOOTBALL: (8, 15, 11, 30),
}

DEFAULT_NOTE_TEMPLATES: dict[SeasonTag, str] = {
    SeasonTag.HOLIDAY: "Holiday shopping windows usually increase quick downtown loops.",
    SeasonTag.SCHOOL: "School pickup periods can increase after-school local stop patterns.",
    SeasonTag.FOOTBALL: "Game nights can shift demand toward pre- and post-game quick stops.",
    SeasonTag.FESTIVAL: "Festival weekends can drive all-day downtown browsing patterns.",
}


@dataclass
class DetectedSeason:
    primary_season: SeasonTag
    season_tags: tuple[SeasonTag, ...]
    season_notes: dict[SeasonTag, str] = field(default_factory=dict)


def month_to_primary_season(month: int) -> SeasonTag:
    if month == 12 or month <= 2:
        return SeasonTag.WINTER
    if 3 <= month <= 5:
        return SeasonTag.SPRING
    if 6 <= month <= 8:
        return SeasonTag.SUMMER
    return SeasonTag.FALL


def _month_day_in_range(today: date, start_month: int, start_day: int, end_month: int, end_day: int) -> bool:
    current = today.month * 100 + today.day
    start = start_month * 100 + start_day
    end = end_month * 100 + end_day
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def _within_operator_range(today: date, start: date | None, end: date | None) -> bool:
    if start is not None and today < start:
        return False
    if end is not None and today > end:
        return False
    return True


def _local_date(tz_name: str | None, now: datetime | None) -> date:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(zone_or_default(tz_name)).date()


def detect_season_state(
    tz_name: str | None,
    now: datetime | None = None,
    custom_seasons: Iterable[TownSeason] = (),
    override: SeasonTag | None = None,
) -> DetectedSeason:
    today = _local_date(tz_name, now)
    primary = month_to_primary_season(today.month)

    tags: set[SeasonTag] = {primary}
    for tag, bounds in _AUTO_RANGES.items():
        if _month_day_in_range(today, *bounds):
            tags.add(tag)

    suppressed: set[SeasonTag] = set()
    notes: dict[SeasonTag, str] = {}
    for season in custom_seasons:
        if _within_operator_range(today, season.start_date, season.end_date):
            tags.add(season.season_key)
            if season.notes:
                notes[season.season_key] = season.notes
        else:
            suppressed.add(season.season_key)
    tags -= suppressed

    if override is not None:
        tags.add(override)
        if override in PRIMARY_SEASONS:
            primary = override

    return DetectedSeason(
        primary_season=primary,
        season_tags=tuple(tag for tag in SeasonTag if tag in tags),
        season_notes=notes,
    )


async def resolve_season_state_for_town(
    store: GraphStore,
    town_id: str,
    owner_id: str | None = None,
    override: SeasonTag | None = None,
    now: datetime | None = None,
) -> DetectedSeason | None:
    """Detect seasons in the town's own timezone. None when the town is unknown."""
    town = await store.get_town(town_id, owner_id=owner_id)
    if town is None:
        return None
    seasons = await store.list_seasons(town_id, owner_id=owner_id)
    return detect_season_state(town.timezone, now=now, custom_seasons=seasons, override=override)


async def refresh_season_note_templates(
    store: GraphStore,
    town_id: str,
    owner_id: str | None = None,
) -> dict[str, int]:
    """Fill blank notes on operator seasons that have a default template."""
    updated = 0
    for season in await store.list_seasons(town_id, owner_id=owner_id):
        if season.notes:
            continue
        template = DEFAULT_NOTE_TEMPLATES.get(season.season_key)
        if template is None:
            continue
        await store.upsert_season(season.model_copy(update={"notes": template}), owner_id=owner_id)
        updated += 1

    if updated:
        logger.info("season_notes: filled %d template note(s) for town=%s", updated, town_id)
    return {"updated": updated}
