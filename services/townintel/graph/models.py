"""
Data model for the town intelligence graph.

Persisted rows are pydantic models so both backends validate the same
bounds on read and write:

    GraphEdge          weight in [0.01, 100000], from != to
    SeasonWeightDelta  weight_delta in [-1000, 1000]
    RouteCandidate     exactly 3 categories, weight >= 0.01
    RouteSet           <= 20 candidates per (town, window)
    SuggestionSet      <= 3 next-stop ideas per (town, category)
    BrandPartner       one row per (brand, partner), never self

Read-only inputs (DemandModel) and scheduler targets are plain dataclasses.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from services.townintel.errors import InvalidInput
from services.townintel.graph.taxonomy import Category
from services.townintel.graph.windows import Window

EDGE_WEIGHT_MIN = 0.01
EDGE_WEIGHT_STORAGE_MAX = 100_000.0
EDGE_WEIGHT_INPUT_MAX = 1000.0
SEASON_DELTA_LIMIT = 1000.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class EdgeMode(str, Enum):
    INCREMENT = "increment"
    ENSURE = "ensure"


class SeasonTag(str, Enum):
    WINTER = "winter"
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    HOLIDAY = "holiday"
    SCHOOL = "school"
    FOOTBALL = "football"
    BASKETBALL = "basketball"
    BASEBALL = "baseball"
    FESTIVAL = "festival"


PRIMARY_SEASONS: frozenset[SeasonTag] = frozenset({
    SeasonTag.WINTER,
    SeasonTag.SPRING,
    SeasonTag.SUMMER,
    SeasonTag.FALL,
})


def parse_season_tag(raw: object) -> SeasonTag:
    """Strict parse. Malformed season keys are always surfaced as InvalidInput."""
    if isinstance(raw, SeasonTag):
        return raw
    if isinstance(raw, str):
        try:
            return SeasonTag(raw.strip().lower())
        except ValueError:
            pass
    raise InvalidInput(f"unknown season tag: {raw!r}")


class DailyGoal(str, Enum):
    NEW_CUSTOMERS = "new_customers"
    REPEAT_CUSTOMERS = "repeat_customers"
    SLOW_HOURS = "slow_hours"


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------


class Town(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    region: Optional[str] = None
    timezone: str = "America/Chicago"
    created_at: datetime = Field(default_factory=_utcnow)


class GraphEdge(BaseModel):
    id: str = Field(default_factory=_new_id, min_length=1)
    town_id: str = Field(min_length=1)
    from_category: Category
    to_category: Category
    weight: float = Field(ge=EDGE_WEIGHT_MIN, le=EDGE_WEIGHT_STORAGE_MAX)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _distinct_endpoints(self) -> "GraphEdge":
        if self.from_category == self.to_category:
            raise ValueError("edge endpoints must differ")
        return self


class SeasonWeightDelta(BaseModel):
    id: str = Field(default_factory=_new_id, min_length=1)
    town_id: str = Field(min_length=1)
    season_tag: SeasonTag
    window: Window
    from_category: Category
    to_category: Category
    weight_delta: float = Field(default=1.0, ge=-SEASON_DELTA_LIMIT, le=SEASON_DELTA_LIMIT)
    created_at: datetime = Field(default_factory=_utcnow)


class TownSeason(BaseModel):
    id: str = Field(default_factory=_new_id, min_length=1)
    town_id: str = Field(min_length=1)
    season_key: SeasonTag
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("notes")
    @classmethod
    def _blank_notes_are_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class RouteCandidate(BaseModel):
    route: tuple[Category, Category, Category]
    why: str = Field(min_length=1)
    weight: float = Field(ge=EDGE_WEIGHT_MIN)

    @property
    def key(self) -> str:
        return ">".join(category.value for category in self.route)


class RouteSet(BaseModel):
    id: str = Field(default_factory=_new_id, min_length=1)
    town_id: str = Field(min_length=1)
    window: Window
    routes: list[RouteCandidate] = Field(default_factory=list, max_length=20)
    computed_at: datetime = Field(default_factory=_utcnow)


class PartnerRelationship(str, Enum):
    PARTNER = "partner"
    FAVORITE = "favorite"
    SPONSOR = "sponsor"


class BrandPartner(BaseModel):
    """An explicit brand-to-brand link inside one town.

    There is no brand table here, so the partner's name, type and town are
    captured when the link is saved.
    """

    id: str = Field(default_factory=_new_id, min_length=1)
    brand_id: str = Field(min_length=1)
    partner_brand_id: str = Field(min_length=1)
    partner_business_name: str = Field(min_length=1)
    partner_business_type: str = Field(min_length=1)
    town_id: str = Field(min_length=1)
    relationship: PartnerRelationship = PartnerRelationship.PARTNER
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _not_self(self) -> "BrandPartner":
        if self.brand_id == self.partner_brand_id:
            raise ValueError("a brand cannot partner with itself")
        return self


class NextStopIdea(BaseModel):
    idea: str = Field(min_length=1)
    caption_add_on: str = Field(min_length=1)
    staff_line: str = Field(min_length=1)


class SuggestionSet(BaseModel):
    id: str = Field(default_factory=_new_id, min_length=1)
    town_id: str = Field(min_length=1)
    category: Category
    next_stop_ideas: list[NextStopIdea] = Field(default_factory=list, max_length=3)
    collab_suggestion: str = Field(min_length=1)
    computed_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Read-only inputs and scheduler values
# ---------------------------------------------------------------------------


class Trend(str, Enum):
    UP = "up"
    STEADY = "steady"
    DOWN = "down"


@dataclass(frozen=True)
class DemandSlot:
    day_of_week: int  # 0=Sunday
    hour: int


@dataclass(frozen=True)
class DemandModel:
    """Town Pulse snapshot. Consumed, never mutated, by the ranking engine."""

    busy_slots: tuple[DemandSlot, ...] = ()
    slow_slots: tuple[DemandSlot, ...] = ()
    category_trends: dict[Category, Trend] = field(default_factory=dict)
    event_energy: str = "low"
    seasonal_notes: str = "Town rhythm is still warming up."


@dataclass(frozen=True)
class ScheduleTarget:
    town_id: str
    owner_id: str | None = None


@dataclass
class Brand:
    """The slice of a tenant's brand profile the daily features read."""

    brand_id: str
    business_name: str
    business_type: str
    town_id: str | None = None
