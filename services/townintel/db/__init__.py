"""
SQLAlchemy async database module.

Re-exports engine and table mirrors for the relational GraphStore backend.
"""

from services.townintel.db.engine import create_engine, create_session_factory
from services.townintel.db.models import (
    Base,
    TownRow,
    TownGraphEdgeRow,
    TownRouteSeasonWeightRow,
    TownSeasonRow,
    TownMicroRouteRow,
    TownGraphSuggestionRow,
    BrandPartnerRow,
)

__all__ = [
    "create_engine",
    "create_session_factory",
    "Base",
    "TownRow",
    "TownGraphEdgeRow",
    "TownRouteSeasonWeightRow",
    "TownSeasonRow",
    "TownMicroRouteRow",
    "TownGraphSuggestionRow",
    "BrandPartnerRow",
]
