"""
SQLAlchemy DeclarativeBase models -- mirrors of the town intelligence tables
in the shared Postgres schema.

Column names are snake_case to match the actual PostgreSQL column names.
Towns are referenced through town_ref, not a foreign key named town_id.

IMPORTANT: These models are NOT used for migrations. The SQL migrations
checked in alongside the web app remain the DDL source of truth.
"""

import uuid as _uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Enum, Float, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# create_type=False: the migrations own the DDL, SA only casts.
TownCategoryEnum = Enum(
    "cafe", "fitness", "salon", "retail", "service", "food", "other",
    name="town_category", create_type=False,
)
TownWindowEnum = Enum(
    "morning", "lunch", "after_work", "evening", "weekend",
    name="town_window", create_type=False,
)
SeasonTagEnum = Enum(
    "winter", "spring", "summer", "fall", "holiday", "school",
    "football", "basketball", "baseball", "festival",
    name="town_season_tag", create_type=False,
)
PartnerRelationshipEnum = Enum(
    "partner", "favorite", "sponsor",
    name="brand_partner_relationship", create_type=False,
)


def _new_id() -> str:
    return str(_uuid.uuid4())


class Base(DeclarativeBase):
    pass


class TownRow(Base):
    __tablename__ = "towns"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    timezone: Mapped[str] = mapped_column(String, default="America/Chicago")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TownGraphEdgeRow(Base):
    __tablename__ = "town_graph_edges"
    __table_args__ = (
        UniqueConstraint("town_ref", "from_category", "to_category"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    from_category: Mapped[str] = mapped_column(TownCategoryEnum)
    to_category: Mapped[str] = mapped_column(TownCategoryEnum)
    weight: Mapped[float] = mapped_column(Float, default=1.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TownRouteSeasonWeightRow(Base):
    __tablename__ = "town_route_season_weights"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    season_tag: Mapped[str] = mapped_column(SeasonTagEnum)
    window: Mapped[str] = mapped_column(TownWindowEnum)
    from_category: Mapped[str] = mapped_column(TownCategoryEnum)
    to_category: Mapped[str] = mapped_column(TownCategoryEnum)
    weight_delta: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TownSeasonRow(Base):
    __tablename__ = "town_seasons"
    __table_args__ = (
        UniqueConstraint("town_ref", "season_key"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    season_key: Mapped[str] = mapped_column(SeasonTagEnum)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TownMicroRouteRow(Base):
    """One ranked route list per (town, window). Replaced wholesale."""

    __tablename__ = "town_micro_routes"
    __table_args__ = (
        UniqueConstraint("town_ref", "window"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    window: Mapped[str] = mapped_column(TownWindowEnum)
    # [{"route": [a, b, c], "why": str, "weight": float}, ...]
    routes: Mapped[list] = mapped_column(JSON, default=list)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TownGraphSuggestionRow(Base):
    __tablename__ = "town_graph_suggestions"
    __table_args__ = (
        UniqueConstraint("town_ref", "category"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    category: Mapped[str] = mapped_column(TownCategoryEnum)
    # {"nextStopIdeas": [...], "collabSuggestion": str}
    suggestions: Mapped[dict] = mapped_column(JSON, default=dict)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class BrandPartnerRow(Base):
    """Explicit brand link. Partner name/type/town are copied in at save time."""

    __tablename__ = "brand_partners"
    __table_args__ = (
        UniqueConstraint("brand_ref", "partner_brand_ref"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    brand_ref: Mapped[str] = mapped_column(String, index=True)
    partner_brand_ref: Mapped[str] = mapped_column(String)
    partner_business_name: Mapped[str] = mapped_column(String)
    partner_business_type: Mapped[str] = mapped_column(String)
    town_ref: Mapped[str] = mapped_column(String, index=True)
    relationship: Mapped[str] = mapped_column(PartnerRelationshipEnum, default="partner")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
