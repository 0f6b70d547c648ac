"""
Learning feedback loop: the graph reinforces itself from text that
downstream features emit.

When a feature turns a "from category -> suggestion" decision into copy,
the category implied by that copy becomes a small increment on the edge
from the originating category. Same-category and unrecognised text are
skipped.

Every call from a user-facing path goes through try_enrich(), which
bounds it with a timeout and converts any failure into an explicit
EnrichmentResult instead of an exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from services.townintel.config import settings
from services.townintel.graph.models import EdgeMode, GraphEdge
from services.townintel.graph.taxonomy import Category, infer_category
from services.townintel.storage.base import GraphStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

MICRO_ROUTE_FEEDBACK_WEIGHT = 0.65
COLLAB_FEEDBACK_WEIGHT = 1.15


@dataclass
class EnrichmentResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: BaseException | None = None


async def try_enrich(
    coro_factory: Callable[[], Awaitable[T]],
    label: str,
    timeout_s: float | None = None,
) -> EnrichmentResult[T]:
    """Run a best-effort enrichment. Never raises."""
    timeout = settings.enrichment_timeout_s if timeout_s is None else timeout_s
    try:
        value = await asyncio.wait_for(coro_factory(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s: timed out after %.1fs", label, timeout)
        return EnrichmentResult(ok=False, error=exc)
    except Exception as exc:
        logger.warning("%s: failed: %s", label, exc, exc_info=True)
        return EnrichmentResult(ok=False, error=exc)
    return EnrichmentResult(ok=True, value=value)


async def reinforce_category(
    store: GraphStore,
    town_id: str,
    from_category: Category,
    to_category: Category | None,
    weight: float,
    owner_id: str | None = None,
) -> GraphEdge | None:
    if to_category is None or to_category == from_category:
        return None
    edge = await store.upsert_edge(
        town_id,
        from_category,
        to_category,
        weight,
        EdgeMode.INCREMENT,
        owner_id=owner_id,
    )
    logger.debug(
        "feedback: %s -> %s +%.2f town=%s",
        from_category.value, to_category.value, weight, town_id,
    )
    return edge


async def reinforce_from_text(
    store: GraphStore,
    town_id: str,
    from_category: Category,
    text: str,
    weight: float,
    owner_id: str | None = None,
) -> GraphEdge | None:
    """Increment from_category -> inferred(text). None when nothing was written."""
    return await reinforce_category(
        store, town_id, from_category, infer_category(text), weight, owner_id=owner_id
    )
