"""
Day-part windows used to scope demand and route ranking.

Slot containment (day_of_week 0=Sunday .. 6=Saturday, inclusive hours):
    weekend     any Saturday / Sunday slot
    morning     weekdays 06-10
    lunch       weekdays 11-13
    after_work  weekdays 15-18
    evening     weekdays 18-21

Hour 18 belongs to both after_work and evening.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from services.townintel.errors import InvalidInput


class Window(str, Enum):
    MORNING = "morning"
    LUNCH = "lunch"
    AFTER_WORK = "after_work"
    EVENING = "evening"
    WEEKEND = "weekend"


WINDOWS: tuple[Window, ...] = tuple(Window)

_WINDOW_LABELS: dict[Window, str] = {
    Window.MORNING: "Morning",
    Window.LUNCH: "Lunch",
    Window.AFTER_WORK: "After Work",
    Window.EVENING: "Evening",
    Window.WEEKEND: "Weekend",
}

_WEEKDAY_HOURS: dict[Window, tuple[int, int]] = {
    Window.MORNING: (6, 10),
    Window.LUNCH: (11, 13),
    Window.AFTER_WORK: (15, 18),
    Window.EVENING: (18, 21),
}

DEFAULT_TIMEZONE = "America/Chicago"


def window_label(window: Window) -> str:
    return _WINDOW_LABELS[window]


def parse_window(raw: object) -> Window:
    """Strict parse. Malformed window keys are always surfaced as InvalidInput."""
    if isinstance(raw, Window):
        return raw
    if isinstance(raw, str):
        try:
            return Window(raw.strip().lower())
        except ValueError:
            pass
    raise InvalidInput(f"unknown window: {raw!r}")


def _is_weekend(day_of_week: int) -> bool:
    return day_of_week in (0, 6)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def window_contains_slot(window: Window, day_of_week: int, hour: int) -> bool:
    day = _clamp(day_of_week, 0, 6)
    hour = _clamp(hour, 0, 23)
    if window is Window.WEEKEND:
        return _is_weekend(day)
    if _is_weekend(day):
        return False
    start, end = _WEEKDAY_HOURS[window]
    return start <= hour <= end


def resolve_window_from_day_hour(day_of_week: int, hour: int) -> Window:
    """Bucket a local (day, hour) into a window.

    Gaps: before 06:00 -> morning, 14:00 -> lunch, after 21:00 -> the next
    morning (weekend when it is Friday night).
    """
    day = _clamp(day_of_week, 0, 6)
    hour = _clamp(hour, 0, 23)
    if _is_weekend(day):
        return Window.WEEKEND

    for window in (Window.MORNING, Window.LUNCH, Window.AFTER_WORK, Window.EVENING):
        start, end = _WEEKDAY_HOURS[window]
        if start <= hour <= end:
            return window

    if hour < 11:
        return Window.MORNING
    if hour < 15:
        return Window.LUNCH
    if hour < 18:
        return Window.AFTER_WORK
    if hour < 21:
        return Window.EVENING
    return Window.WEEKEND if day == 5 else Window.MORNING


def zone_or_default(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((tz_name or "").strip() or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_day_hour(tz_name: str | None, now: datetime | None = None) -> tuple[int, int]:
    """Return (day_of_week with 0=Sunday, hour) in the given timezone."""
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    local = current.astimezone(zone_or_default(tz_name))
    # isoweekday: Monday=1 .. Sunday=7
    return local.isoweekday() % 7, local.hour


def resolve_window(
    tz_name: str | None,
    now: datetime | None = None,
    override: Window | None = None,
) -> Window:
    if override is not None:
        return override
    day, hour = local_day_hour(tz_name, now)
    return resolve_window_from_day_hour(day, hour)
