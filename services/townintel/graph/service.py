"""
TownGraphService: the operator/user-facing edge API and the per-category
"what to visit next" suggestion sets.

Suggestion recompute is deterministic: it writes template copy built from
the top three outgoing edges of each category, one row per category that
has any outgoing edge. Generated copy (llm.writer) is only used by the
daily features, never by the scheduled recompute.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from services.townintel.errors import InvalidInput
from services.townintel.graph.models import (
    EDGE_WEIGHT_INPUT_MAX,
    EDGE_WEIGHT_MIN,
    Brand,
    BrandPartner,
    EdgeMode,
    GraphEdge,
    NextStopIdea,
    PartnerRelationship,
    SuggestionSet,
)
from services.townintel.graph.taxonomy import (
    CATEGORY_ORDER,
    Category,
    category_from_business_type,
    category_label,
    parse_category,
)
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)

SUGGESTION_EDGES_PER_CATEGORY = 3
PREFERRED_PARTNER_CATEGORY_LIMIT = 10
PARTNER_CATEGORY_LIMIT = 4

_EMPTY_IDEA = NextStopIdea(
    idea="Keep your local stops close and simple today.",
    caption_add_on="Take the local route and keep it in town.",
    staff_line="Invite guests to make a couple local stops while they're out.",
)


def _require_category(raw: Category | str, field: str) -> Category:
    category = parse_category(raw)
    if category is None:
        raise InvalidInput(f"unknown {field}: {raw!r}")
    return category


def fallback_suggestion_from_edges(
    from_category: Category,
    edges: Sequence[tuple[Category, float]],
) -> tuple[list[NextStopIdea], str]:
    """Template next-stop ideas and collaboration line for (to, weight) pairs."""
    from_label = category_label(from_category).lower()
    ideas = []
    for to_category, _ in edges[:SUGGESTION_EDGES_PER_CATEGORY]:
        to_label = category_label(to_category).lower()
        ideas.append(NextStopIdea(
            idea=f"After a {from_label} stop, many locals keep things moving with a {to_label} visit.",
            caption_add_on=f"If you're nearby, pair this with a quick {to_label} stop in town.",
            staff_line=f"If someone asks what to do next, suggest a local {to_label} stop.",
        ))
    top_label = category_label(edges[0][0]).lower() if edges else "local"
    collab = f"Connect {from_label} moments with nearby {top_label} routines in a natural way."
    return ideas or [_EMPTY_IDEA], collab


def same_town_partners(brand: Brand, partners: Iterable[BrandPartner]) -> list[BrandPartner]:
    """Links whose partner was saved in the brand's current town."""
    if not brand.town_id:
        return []
    return [partner for partner in partners if partner.town_id == brand.town_id]


def partner_summaries(partners: Iterable[BrandPartner]) -> list[dict[str, str]]:
    return [
        {
            "businessName": partner.partner_business_name,
            "type": partner.partner_business_type,
            "relationship": partner.relationship.value,
        }
        for partner in partners
    ]


def partner_category_edges(
    from_category: Category,
    partners: Iterable[BrandPartner],
    limit: int = PARTNER_CATEGORY_LIMIT,
) -> list[tuple[Category, float]]:
    """(category, partner count) pairs standing in for edges on an empty graph.

    Partners in the brand's own category are skipped. Ties keep the order
    partners were saved in.
    """
    counts: dict[Category, int] = {}
    for partner in partners:
        category = category_from_business_type(partner.partner_business_type)
        if category == from_category:
            continue
        counts[category] = counts.get(category, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [(category, float(count)) for category, count in ranked[:limit]]


class TownGraphService:
    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def add_edge(
        self,
        town_id: str,
        from_category: Category | str,
        to_category: Category | str,
        weight: float | None = None,
        mode: EdgeMode | str = EdgeMode.INCREMENT,
        owner_id: str | None = None,
    ) -> GraphEdge | None:
        """Explicit edge write. Same-category pairs return None.

        Raises:
            InvalidInput: unknown category or mode, or an explicit weight
                outside [0.01, 1000].
        """
        source = _require_category(from_category, "from_category")
        target = _require_category(to_category, "to_category")
        try:
            edge_mode = EdgeMode(mode)
        except ValueError as exc:
            raise InvalidInput(f"unknown edge mode: {mode!r}") from exc
        if weight is not None and not (
            math.isfinite(weight) and EDGE_WEIGHT_MIN <= weight <= EDGE_WEIGHT_INPUT_MAX
        ):
            raise InvalidInput(f"edge weight out of range: {weight}")

        return await self._store.upsert_edge(
            town_id,
            source,
            target,
            1.0 if weight is None else weight,
            edge_mode,
            owner_id=owner_id,
        )

    async def get_graph(self, town_id: str, owner_id: str | None = None) -> dict[str, Any]:
        """Nodes in canonical category order, edges by weight descending."""
        edges = await self._store.list_edges(town_id, owner_id=owner_id)
        present = {edge.from_category for edge in edges} | {edge.to_category for edge in edges}
        return {
            "nodes": [category.value for category in CATEGORY_ORDER if category in present],
            "edges": [
                {
                    "from": edge.from_category.value,
                    "to": edge.to_category.value,
                    "weight": edge.weight,
                }
                for edge in edges
            ],
        }

    async def record_manual_category_preferences(
        self,
        brand: Brand,
        to_categories: Iterable[Category | str],
        owner_id: str | None = None,
    ) -> int:
        """Ensure an edge from the brand's category to each preferred category.

        Never amplifies existing weights. Returns the number of edges written.
        """
        if not brand.town_id:
            return 0
        from_category = category_from_business_type(brand.business_type)

        unique: list[Category] = []
        for raw in to_categories:
            category = _require_category(raw, "to_category")
            if category != from_category and category not in unique:
                unique.append(category)

        written = 0
        for category in unique:
            edge = await self._store.upsert_edge(
                brand.town_id,
                from_category,
                category,
                1.0,
                EdgeMode.ENSURE,
                owner_id=owner_id,
            )
            if edge is not None:
                written += 1
        return written

    # ------------------------------------------------------------------
    # Explicit partners
    # ------------------------------------------------------------------

    async def upsert_explicit_partner(
        self,
        brand: Brand,
        partner: Brand,
        relationship: PartnerRelationship | str = PartnerRelationship.PARTNER,
        owner_id: str | None = None,
    ) -> BrandPartner:
        """Save (or update) an explicit link from brand to partner.

        Raises:
            InvalidInput: partner outside the brand's town, the brand itself,
                or an unknown relationship.
        """
        if not brand.town_id or partner.town_id != brand.town_id:
            raise InvalidInput("partner brand must belong to the same town")
        if partner.brand_id == brand.brand_id:
            raise InvalidInput("a brand cannot partner with itself")
        try:
            kind = PartnerRelationship(relationship)
        except ValueError as exc:
            raise InvalidInput(f"unknown partner relationship: {relationship!r}") from exc

        stamp = datetime.now(timezone.utc)
        saved = await self._store.upsert_partner(
            BrandPartner(
                brand_id=brand.brand_id,
                partner_brand_id=partner.brand_id,
                partner_business_name=partner.business_name,
                partner_business_type=partner.business_type,
                town_id=brand.town_id,
                relationship=kind,
                created_at=stamp,
                updated_at=stamp,
            ),
            owner_id=owner_id,
        )
        logger.info(
            "partner_upsert: town=%s brand=%s relationship=%s", brand.town_id, brand.brand_id, kind.value
        )
        return saved

    async def remove_explicit_partner(
        self,
        brand: Brand,
        partner_brand_id: str,
        owner_id: str | None = None,
    ) -> bool:
        if not partner_brand_id or not partner_brand_id.strip():
            raise InvalidInput("partner_brand_id is required")
        return await self._store.delete_partner(
            brand.brand_id, partner_brand_id.strip(), owner_id=owner_id
        )

    async def list_explicit_partners(
        self, brand: Brand, owner_id: str | None = None
    ) -> list[dict[str, str]]:
        """Partners still in the brand's town, as name/type/relationship."""
        if not brand.town_id:
            return []
        rows = await self._store.list_partners(brand.brand_id, owner_id=owner_id)
        return partner_summaries(same_town_partners(brand, rows))

    async def list_preferred_partner_categories(
        self, brand: Brand, owner_id: str | None = None
    ) -> list[Category]:
        """Categories the brand's own category most often leads to."""
        if not brand.town_id:
            return []
        from_category = category_from_business_type(brand.business_type)
        edges = await self._store.top_edges_from(
            brand.town_id, from_category, limit=PREFERRED_PARTNER_CATEGORY_LIMIT, owner_id=owner_id
        )
        return [to_category for to_category, _ in edges]

    async def recompute_town_suggestions(
        self,
        town_id: str,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, int]:
        stamp = now or datetime.now(timezone.utc)
        edges = await self._store.list_edges(town_id, owner_id=owner_id)

        updated = 0
        for category in CATEGORY_ORDER:
            outgoing = [
                (edge.to_category, edge.weight)
                for edge in edges
                if edge.from_category == category
            ][:SUGGESTION_EDGES_PER_CATEGORY]
            if not outgoing:
                continue
            ideas, collab = fallback_suggestion_from_edges(category, outgoing)
            await self._store.replace_suggestion_set(
                SuggestionSet(
                    town_id=town_id,
                    category=category,
                    next_stop_ideas=ideas,
                    collab_suggestion=collab,
                    computed_at=stamp,
                ),
                owner_id=owner_id,
            )
            updated += 1

        logger.info("suggestion_recompute: town=%s categories=%d", town_id, updated)
        return {"updated": updated}
