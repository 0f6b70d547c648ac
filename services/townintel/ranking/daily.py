"""
Daily content features built on the town graph.

Both features are enrichment for a larger daily pack: nothing here may
fail the caller. Each returns None when there is nothing useful to say
(no town, no routes, no outgoing edges or partners) and falls back to deterministic
copy when text generation is unavailable.

Both close the learning loop by reinforcing the edge from the brand's
own category to the category their copy points at.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from services.townintel.config import settings
from services.townintel.feedback.loop import (
    COLLAB_FEEDBACK_WEIGHT,
    MICRO_ROUTE_FEEDBACK_WEIGHT,
    reinforce_category,
    reinforce_from_text,
    try_enrich,
)
from services.townintel.graph.models import (
    Brand,
    BrandPartner,
    DailyGoal,
    DemandModel,
    NextStopIdea,
    RouteCandidate,
)
from services.townintel.graph.service import (
    fallback_suggestion_from_edges,
    partner_category_edges,
    partner_summaries,
    same_town_partners,
)
from services.townintel.graph.taxonomy import (
    Category,
    category_from_business_type,
    category_label,
    infer_category,
    parse_category,
)
from services.townintel.graph.windows import Window, resolve_window, window_label
from services.townintel.llm.writer import TextGenerator, validate_reply
from services.townintel.ranking.routes import adjust_routes_for_goal
from services.townintel.ranking.service import MicroRouteService
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)

GRAPH_BOOST_EDGE_LIMIT = 4


def fallback_micro_route_copy(window: Window, route: tuple[Category, ...]) -> dict[str, Any]:
    labels = [category_label(category) for category in route]
    name = window_label(window)
    return {
        "microRouteLine": f"{name} flow: {labels[0]} -> {labels[1]} -> {labels[2]}.",
        "captionAddOn": f"Try a simple {name.lower()} route with nearby local stops.",
        "staffLine": f"If guests ask what to do next, suggest a {name.lower()} local route.",
        "optionalCollabCategory": route[1].value,
    }


def _demand_payload(demand: DemandModel | None) -> dict[str, Any] | None:
    if demand is None:
        return None
    return {
        "busyWindows": [{"dow": s.day_of_week, "hour": s.hour} for s in demand.busy_slots],
        "slowWindows": [{"dow": s.day_of_week, "hour": s.hour} for s in demand.slow_slots],
        "categoryTrends": [
            {"category": category.value, "trend": trend.value}
            for category, trend in demand.category_trends.items()
        ],
        "eventEnergy": demand.event_energy,
        "seasonalNotes": demand.seasonal_notes,
    }


def _routes_payload(routes: list[RouteCandidate]) -> list[dict[str, Any]]:
    return [route.model_dump(mode="json") for route in routes]


class DailyTownContent:
    def __init__(
        self,
        store: GraphStore,
        routes: MicroRouteService,
        generator: TextGenerator | None = None,
    ) -> None:
        self._store = store
        self._routes = routes
        self._generator = generator

    async def _generate(self, kind: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        if self._generator is None:
            return None
        result = await try_enrich(
            lambda: self._generator.generate(kind, payload),
            f"{kind}_copy",
            timeout_s=settings.text_generation_timeout_s,
        )
        if not result.ok:
            return None
        try:
            return validate_reply(kind, result.value)
        except ValueError as exc:
            logger.warning("%s_copy: unusable reply, using fallback: %s", kind, exc)
            return None

    async def _explicit_partners(self, brand: Brand, owner_id: str | None) -> list[BrandPartner]:
        lookup = await try_enrich(
            lambda: self._store.list_partners(brand.brand_id, owner_id=owner_id), "explicit_partners"
        )
        return same_town_partners(brand, lookup.value) if lookup.ok else []

    async def build_micro_route_for_daily(
        self,
        owner_id: str | None,
        brand: Brand,
        goal: DailyGoal,
        tz_name: str | None,
        window_override: Window | None = None,
        demand: DemandModel | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any] | None:
        if not brand.town_id:
            return None
        town_id = brand.town_id

        window = resolve_window(tz_name, now=now, override=window_override)
        route_set = await self._routes.get_or_recompute_window_routes(
            town_id, window, owner_id=owner_id, now=now
        )
        if route_set is None or not route_set.routes:
            return None

        town_lookup = await try_enrich(
            lambda: self._store.get_town(town_id, owner_id=owner_id), "micro_route_town"
        )
        town = town_lookup.value if town_lookup.ok else None
        if town is None:
            return None

        if demand is None:
            demand = await self._routes.load_demand_model(town_id, owner_id=owner_id)
        top_routes = adjust_routes_for_goal(route_set.routes, goal, window, demand)
        partners = await self._explicit_partners(brand, owner_id)

        copy = await self._generate("micro_route", {
            "brand": {"name": brand.business_name, "type": brand.business_type},
            "town": {"id": town.id, "name": town.name, "region": town.region, "timezone": town.timezone},
            "window": window.value,
            "goal": goal.value,
            "topRoutes": _routes_payload(top_routes),
            "townPulse": _demand_payload(demand),
            "explicitPartners": partner_summaries(partners),
        })
        if copy is None:
            copy = fallback_micro_route_copy(window, top_routes[0].route)

        from_category = category_from_business_type(brand.business_type)
        to_category = parse_category(copy.get("optionalCollabCategory")) or infer_category(copy["microRouteLine"])
        await try_enrich(
            lambda: reinforce_category(
                self._store, town_id, from_category, to_category,
                MICRO_ROUTE_FEEDBACK_WEIGHT, owner_id=owner_id,
            ),
            "micro_route_feedback",
        )

        return {
            "window": window.value,
            "line": copy["microRouteLine"],
            "caption_add_on": copy["captionAddOn"],
            "staff_script": copy["staffLine"],
        }

    async def build_graph_boost_for_daily(
        self,
        owner_id: str | None,
        brand: Brand,
        demand: DemandModel | None = None,
    ) -> dict[str, Any] | None:
        if not brand.town_id:
            return None
        town_id = brand.town_id
        from_category = category_from_business_type(brand.business_type)

        lookup = await try_enrich(
            lambda: self._store.top_edges_from(
                town_id, from_category, limit=GRAPH_BOOST_EDGE_LIMIT, owner_id=owner_id
            ),
            "graph_boost_edges",
        )
        top_edges = lookup.value if lookup.ok else None
        partners = await self._explicit_partners(brand, owner_id)
        if not top_edges:
            top_edges = partner_category_edges(from_category, partners)
        if not top_edges:
            return None

        copy = await self._generate("graph_suggestion", {
            "brand": {"name": brand.business_name, "type": brand.business_type},
            "category": from_category.value,
            "topEdgesFromCategory": [
                {"to": to_category.value, "weight": weight} for to_category, weight in top_edges
            ],
            "townPulse": _demand_payload(demand),
            "explicitPartners": partner_summaries(partners),
        })
        if copy is not None:
            ideas = [
                NextStopIdea(
                    idea=item["idea"],
                    caption_add_on=item["captionAddOn"],
                    staff_line=item["staffLine"],
                )
                for item in copy["nextStopIdeas"]
            ]
            collab = copy["collabSuggestion"]
        else:
            ideas, collab = fallback_suggestion_from_edges(from_category, top_edges)

        await try_enrich(
            lambda: reinforce_from_text(
                self._store, town_id, from_category, collab,
                COLLAB_FEEDBACK_WEIGHT, owner_id=owner_id,
            ),
            "graph_boost_feedback",
        )

        first = ideas[0]
        return {
            "next_stop_idea": first.idea,
            "caption_add_on": first.caption_add_on,
            "staff_line": first.staff_line,
            "collab_suggestion": collab,
        }
