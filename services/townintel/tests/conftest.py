"""
Shared test fixtures for the town intelligence test suite.

Provides:
- env defaults so config never reaches real services
- factory functions for core models (Town, GraphEdge, Brand, DemandModel)
- a FileGraphStore rooted in a per-test tmp directory
"""

import os
from datetime import datetime, timezone
from typing import Any

import pytest

# Ensure test env vars before any package imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("STORAGE_BACKEND", "file")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")

from services.townintel.graph.models import (  # noqa: E402
    Brand,
    DemandModel,
    DemandSlot,
    GraphEdge,
    Town,
    Trend,
)
from services.townintel.graph.taxonomy import Category  # noqa: E402
from services.townintel.storage.file_store import FileGraphStore  # noqa: E402

OWNER_ID = "owner-1"
TOWN_ID = "town-1"

# Wednesday 2026-03-04 15:00 UTC == 09:00 in America/Chicago (morning window)
FIXED_NOW = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_town(**overrides: Any) -> Town:
    defaults = {
        "id": TOWN_ID,
        "name": "Independence",
        "region": "KS",
        "timezone": "America/Chicago",
    }
    defaults.update(overrides)
    return Town(**defaults)


def make_edge(
    from_category: Category,
    to_category: Category,
    weight: float,
    **overrides: Any,
) -> GraphEdge:
    defaults: dict[str, Any] = {
        "town_id": TOWN_ID,
        "from_category": from_category,
        "to_category": to_category,
        "weight": weight,
    }
    defaults.update(overrides)
    return GraphEdge(**defaults)


def make_brand(**overrides: Any) -> Brand:
    defaults: dict[str, Any] = {
        "brand_id": "brand-1",
        "business_name": "Main Street Tea",
        "business_type": "loaded-tea",
        "town_id": TOWN_ID,
    }
    defaults.update(overrides)
    return Brand(**defaults)


def make_demand(
    busy: list[tuple[int, int]] | None = None,
    slow: list[tuple[int, int]] | None = None,
    trends: dict[Category, Trend] | None = None,
) -> DemandModel:
    return DemandModel(
        busy_slots=tuple(DemandSlot(day_of_week=d, hour=h) for d, h in (busy or [])),
        slow_slots=tuple(DemandSlot(day_of_week=d, hour=h) for d, h in (slow or [])),
        category_trends=dict(trends or {}),
    )


def sample_edges() -> list[GraphEdge]:
    """cafe->fitness 5, fitness->retail 3, cafe->retail 1."""
    return [
        make_edge(Category.CAFE, Category.FITNESS, 5.0),
        make_edge(Category.FITNESS, Category.RETAIL, 3.0),
        make_edge(Category.CAFE, Category.RETAIL, 1.0),
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def file_store(tmp_path) -> FileGraphStore:
    """File-backed store isolated to this test."""
    return FileGraphStore(tmp_path)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
