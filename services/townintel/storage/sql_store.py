"""
Relational GraphStore: SQLAlchemy async sessions over asyncpg.

One shared schema for every owner; owner_id is accepted and ignored.

Concurrency comes from the database, not from the process:
  - edge increments are a single INSERT ... ON CONFLICT DO UPDATE that
    adds to the stored weight in SQL, so concurrent reinforcements
    never lose an update
  - route sets are ON CONFLICT (town_ref, window) DO UPDATE, so a
    reader sees either the old list or the new one

SQLAlchemy errors and connection failures surface as StoreFailure.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import delete, desc, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from services.townintel.db.models import (
    BrandPartnerRow,
    TownGraphEdgeRow,
    TownGraphSuggestionRow,
    TownMicroRouteRow,
    TownRouteSeasonWeightRow,
    TownRow,
    TownSeasonRow,
)
from services.townintel.errors import StoreFailure
from services.townintel.graph.models import (
    EDGE_WEIGHT_MIN,
    EDGE_WEIGHT_STORAGE_MAX,
    BrandPartner,
    EdgeMode,
    GraphEdge,
    NextStopIdea,
    RouteCandidate,
    RouteSet,
    ScheduleTarget,
    SeasonWeightDelta,
    SuggestionSet,
    Town,
    TownSeason,
)
from services.townintel.graph.taxonomy import Category
from services.townintel.graph.windows import Window
from services.townintel.storage.base import GraphStore, clamp_storage_weight

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Row -> model conversion
# ---------------------------------------------------------------------------


def _town_from_row(row: TownRow) -> Town:
    return Town(
        id=row.id,
        name=row.name,
        region=row.region,
        timezone=row.timezone,
        created_at=row.created_at,
    )


def _edge_from_row(row: TownGraphEdgeRow) -> GraphEdge:
    return GraphEdge(
        id=row.id,
        town_id=row.town_ref,
        from_category=row.from_category,
        to_category=row.to_category,
        weight=float(row.weight),
        updated_at=row.updated_at,
    )


def _delta_from_row(row: TownRouteSeasonWeightRow) -> SeasonWeightDelta:
    return SeasonWeightDelta(
        id=row.id,
        town_id=row.town_ref,
        season_tag=row.season_tag,
        window=row.window,
        from_category=row.from_category,
        to_category=row.to_category,
        weight_delta=float(row.weight_delta),
        created_at=row.created_at,
    )


def _season_from_row(row: TownSeasonRow) -> TownSeason:
    return TownSeason(
        id=row.id,
        town_id=row.town_ref,
        season_key=row.season_key,
        start_date=row.start_date,
        end_date=row.end_date,
        notes=row.notes,
        created_at=row.created_at,
    )


def _route_set_from_row(row: TownMicroRouteRow) -> RouteSet:
    return RouteSet(
        id=row.id,
        town_id=row.town_ref,
        window=row.window,
        routes=[RouteCandidate.model_validate(item) for item in (row.routes or [])],
        computed_at=row.computed_at,
    )


def _suggestion_from_row(row: TownGraphSuggestionRow) -> SuggestionSet:
    payload: dict[str, Any] = row.suggestions or {}
    return SuggestionSet(
        id=row.id,
        town_id=row.town_ref,
        category=row.category,
        next_stop_ideas=[
            NextStopIdea(
                idea=item["idea"],
                caption_add_on=item["captionAddOn"],
                staff_line=item["staffLine"],
            )
            for item in payload.get("nextStopIdeas", [])
        ],
        collab_suggestion=payload.get("collabSuggestion") or "",
        computed_at=row.computed_at,
    )


def _suggestion_payload(suggestion: SuggestionSet) -> dict[str, Any]:
    return {
        "nextStopIdeas": [
            {
                "idea": item.idea,
                "captionAddOn": item.caption_add_on,
                "staffLine": item.staff_line,
            }
            for item in suggestion.next_stop_ideas
        ],
        "collabSuggestion": suggestion.collab_suggestion,
    }


def _partner_from_row(row: BrandPartnerRow) -> BrandPartner:
    return BrandPartner(
        id=row.id,
        brand_id=row.brand_ref,
        partner_brand_id=row.partner_brand_ref,
        partner_business_name=row.partner_business_name,
        partner_business_type=row.partner_business_type,
        town_id=row.town_ref,
        relationship=row.relationship,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlGraphStore(GraphStore):
    shared_topology = True

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.error("sql_store: %s", exc)
            raise StoreFailure(str(exc)) from exc

    # ------------------------------------------------------------------
    # Towns
    # ------------------------------------------------------------------

    async def get_town(self, town_id: str, owner_id: str | None = None) -> Town | None:
        async with self._session() as session:
            row = await session.get(TownRow, town_id)
            return _town_from_row(row) if row is not None else None

    async def upsert_town(self, town: Town, owner_id: str | None = None) -> Town:
        stmt = (
            pg_insert(TownRow)
            .values(
                id=town.id,
                name=town.name,
                region=town.region,
                timezone=town.timezone,
                created_at=town.created_at,
            )
            .on_conflict_do_update(
                index_elements=["id"],
                set_={"name": town.name, "region": town.region, "timezone": town.timezone},
            )
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()
        return town

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def get_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        owner_id: str | None = None,
    ) -> GraphEdge | None:
        stmt = select(TownGraphEdgeRow).where(
            TownGraphEdgeRow.town_ref == town_id,
            TownGraphEdgeRow.from_category == from_category.value,
            TownGraphEdgeRow.to_category == to_category.value,
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            return _edge_from_row(row) if row is not None else None

    async def _write_edge(
        self,
        town_id: str,
        from_category: Category,
        to_category: Category,
        weight: float,
        mode: EdgeMode,
        now: datetime | None,
        owner_id: str | None,
    ) -> GraphEdge | None:
        stamp = now or _utcnow()
        if mode is EdgeMode.INCREMENT:
            set_: dict[str, Any] = {
                "weight": func.least(
                    EDGE_WEIGHT_STORAGE_MAX,
                    func.greatest(EDGE_WEIGHT_MIN, TownGraphEdgeRow.weight + weight),
                ),
                "updated_at": stamp,
            }
        else:
            set_ = {"updated_at": stamp}

        stmt = (
            pg_insert(TownGraphEdgeRow)
            .values(
                town_ref=town_id,
                from_category=from_category.value,
                to_category=to_category.value,
                weight=clamp_storage_weight(weight),
                updated_at=stamp,
            )
            .on_conflict_do_update(
                index_elements=["town_ref", "from_category", "to_category"],
                set_=set_,
            )
            .returning(TownGraphEdgeRow)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            await session.commit()
            return _edge_from_row(row) if row is not None else None

    async def list_edges(self, town_id: str, owner_id: str | None = None) -> list[GraphEdge]:
        stmt = (
            select(TownGraphEdgeRow)
            .where(TownGraphEdgeRow.town_ref == town_id)
            .order_by(desc(TownGraphEdgeRow.weight), TownGraphEdgeRow.id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_edge_from_row(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Season overlay
    # ------------------------------------------------------------------

    async def add_season_delta(
        self, delta: SeasonWeightDelta, owner_id: str | None = None
    ) -> SeasonWeightDelta:
        stmt = pg_insert(TownRouteSeasonWeightRow).values(
            id=delta.id,
            town_ref=delta.town_id,
            season_tag=delta.season_tag.value,
            window=delta.window.value,
            from_category=delta.from_category.value,
            to_category=delta.to_category.value,
            weight_delta=delta.weight_delta,
            created_at=delta.created_at,
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()
        return delta

    async def list_season_deltas(
        self,
        town_id: str,
        window: Window | None = None,
        owner_id: str | None = None,
    ) -> list[SeasonWeightDelta]:
        stmt = select(TownRouteSeasonWeightRow).where(TownRouteSeasonWeightRow.town_ref == town_id)
        if window is not None:
            stmt = stmt.where(TownRouteSeasonWeightRow.window == window.value)
        stmt = stmt.order_by(desc(TownRouteSeasonWeightRow.created_at))
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_delta_from_row(row) for row in result.scalars().all()]

    async def delete_season_delta(
        self, town_id: str, delta_id: str, owner_id: str | None = None
    ) -> bool:
        stmt = delete(TownRouteSeasonWeightRow).where(
            TownRouteSeasonWeightRow.town_ref == town_id,
            TownRouteSeasonWeightRow.id == delta_id,
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def upsert_season(self, season: TownSeason, owner_id: str | None = None) -> TownSeason:
        stmt = (
            pg_insert(TownSeasonRow)
            .values(
                id=season.id,
                town_ref=season.town_id,
                season_key=season.season_key.value,
                start_date=season.start_date,
                end_date=season.end_date,
                notes=season.notes,
                created_at=season.created_at,
            )
            .on_conflict_do_update(
                index_elements=["town_ref", "season_key"],
                set_={
                    "start_date": season.start_date,
                    "end_date": season.end_date,
                    "notes": season.notes,
                },
            )
            .returning(TownSeasonRow)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            await session.commit()
            return _season_from_row(row) if row is not None else season

    async def list_seasons(self, town_id: str, owner_id: str | None = None) -> list[TownSeason]:
        stmt = (
            select(TownSeasonRow)
            .where(TownSeasonRow.town_ref == town_id)
            .order_by(TownSeasonRow.season_key)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_season_from_row(row) for row in result.scalars().all()]

    async def delete_season(
        self, town_id: str, season_key: str, owner_id: str | None = None
    ) -> bool:
        stmt = delete(TownSeasonRow).where(
            TownSeasonRow.town_ref == town_id,
            TownSeasonRow.season_key == season_key,
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Derived artifacts
    # ------------------------------------------------------------------

    async def replace_route_set(
        self,
        town_id: str,
        window: Window,
        routes: list[RouteCandidate],
        owner_id: str | None = None,
        computed_at: datetime | None = None,
    ) -> RouteSet | None:
        stamp = computed_at or _utcnow()
        payload = [route.model_dump(mode="json") for route in routes]
        stmt = (
            pg_insert(TownMicroRouteRow)
            .values(town_ref=town_id, window=window.value, routes=payload, computed_at=stamp)
            .on_conflict_do_update(
                index_elements=["town_ref", "window"],
                set_={"routes": payload, "computed_at": stamp},
            )
            .returning(TownMicroRouteRow)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            await session.commit()
            return _route_set_from_row(row) if row is not None else None

    async def get_route_set(
        self, town_id: str, window: Window, owner_id: str | None = None
    ) -> RouteSet | None:
        stmt = select(TownMicroRouteRow).where(
            TownMicroRouteRow.town_ref == town_id,
            TownMicroRouteRow.window == window.value,
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            return _route_set_from_row(row) if row is not None else None

    async def route_status(
        self, town_id: str, owner_id: str | None = None
    ) -> tuple[int, datetime | None]:
        stmt = select(
            func.count(TownMicroRouteRow.id),
            func.max(TownMicroRouteRow.computed_at),
        ).where(TownMicroRouteRow.town_ref == town_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.first()
        if row is None:
            return 0, None
        count, latest = row
        return int(count or 0), latest

    async def replace_suggestion_set(
        self, suggestion: SuggestionSet, owner_id: str | None = None
    ) -> SuggestionSet | None:
        payload = _suggestion_payload(suggestion)
        stmt = (
            pg_insert(TownGraphSuggestionRow)
            .values(
                town_ref=suggestion.town_id,
                category=suggestion.category.value,
                suggestions=payload,
                computed_at=suggestion.computed_at,
            )
            .on_conflict_do_update(
                index_elements=["town_ref", "category"],
                set_={"suggestions": payload, "computed_at": suggestion.computed_at},
            )
            .returning(TownGraphSuggestionRow)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            await session.commit()
            return _suggestion_from_row(row) if row is not None else None

    async def latest_suggestion_computed_at(
        self, town_id: str, owner_id: str | None = None
    ) -> datetime | None:
        stmt = select(func.max(TownGraphSuggestionRow.computed_at)).where(
            TownGraphSuggestionRow.town_ref == town_id
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalar()

    # ------------------------------------------------------------------
    # Explicit partners
    # ------------------------------------------------------------------

    async def upsert_partner(self, partner: BrandPartner, owner_id: str | None = None) -> BrandPartner:
        stmt = (
            pg_insert(BrandPartnerRow)
            .values(
                id=partner.id,
                brand_ref=partner.brand_id,
                partner_brand_ref=partner.partner_brand_id,
                partner_business_name=partner.partner_business_name,
                partner_business_type=partner.partner_business_type,
                town_ref=partner.town_id,
                relationship=partner.relationship.value,
                created_at=partner.created_at,
                updated_at=partner.updated_at,
            )
            .on_conflict_do_update(
                index_elements=["brand_ref", "partner_brand_ref"],
                set_={
                    "partner_business_name": partner.partner_business_name,
                    "partner_business_type": partner.partner_business_type,
                    "town_ref": partner.town_id,
                    "relationship": partner.relationship.value,
                    "updated_at": partner.updated_at,
                },
            )
            .returning(BrandPartnerRow)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            await session.commit()
            return _partner_from_row(row) if row is not None else partner

    async def delete_partner(
        self, brand_id: str, partner_brand_id: str, owner_id: str | None = None
    ) -> bool:
        stmt = delete(BrandPartnerRow).where(
            BrandPartnerRow.brand_ref == brand_id,
            BrandPartnerRow.partner_brand_ref == partner_brand_id,
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def list_partners(self, brand_id: str, owner_id: str | None = None) -> list[BrandPartner]:
        stmt = (
            select(BrandPartnerRow)
            .where(BrandPartnerRow.brand_ref == brand_id)
            .order_by(BrandPartnerRow.created_at)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_partner_from_row(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_recent_graph_targets(self, limit: int) -> list[ScheduleTarget]:
        latest = func.max(TownGraphEdgeRow.updated_at).label("latest")
        stmt = (
            select(TownGraphEdgeRow.town_ref, latest)
            .group_by(TownGraphEdgeRow.town_ref)
            .order_by(desc(latest))
            .limit(max(1, limit))
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [ScheduleTarget(town_id=town_ref) for town_ref, _ in result.all()]

    async def list_recent_season_targets(self, limit: int) -> list[ScheduleTarget]:
        latest = func.max(TownSeasonRow.created_at).label("latest")
        stmt = (
            select(TownSeasonRow.town_ref, latest)
            .group_by(TownSeasonRow.town_ref)
            .order_by(desc(latest))
            .limit(max(1, limit))
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [ScheduleTarget(town_id=town_ref) for town_ref, _ in result.all()]
