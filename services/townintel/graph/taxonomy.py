"""
Category taxonomy: the closed set of business categories used as graph vertices.

Canonical order (also the node order returned by get_graph):
    cafe, fitness, salon, retail, service, food, other

infer_category() is a first-match-wins rule list. Rule ORDER is load-bearing:
overlapping keywords are resolved by list position, never by score.
    1. fitness   2. salon   3. cafe   4. food   5. retail   6. service
"""

from __future__ import annotations

import re
from enum import Enum


class Category(str, Enum):
    CAFE = "cafe"
    FITNESS = "fitness"
    SALON = "salon"
    RETAIL = "retail"
    SERVICE = "service"
    FOOD = "food"
    OTHER = "other"


CATEGORY_ORDER: tuple[Category, ...] = tuple(Category)

CATEGORY_LABELS: dict[Category, str] = {
    Category.CAFE: "Coffee / Cafe",
    Category.FITNESS: "Fitness",
    Category.SALON: "Salon / Beauty",
    Category.RETAIL: "Retail",
    Category.SERVICE: "Services",
    Category.FOOD: "Food",
    Category.OTHER: "Local stop",
}

# ---------------------------------------------------------------------------
# Text inference rules: evaluated top to bottom, first match wins
# ---------------------------------------------------------------------------

_CATEGORY_HINTS: list[tuple[Category, list[re.Pattern[str]]]] = [
    (Category.FITNESS, [
        re.compile(r"\bgym\b", re.IGNORECASE),
        re.compile(r"\bworkout\b", re.IGNORECASE),
        re.compile(r"\btraining\b", re.IGNORECASE),
        re.compile(r"\bclass(es)?\b", re.IGNORECASE),
        re.compile(r"\bfit(ness)?\b", re.IGNORECASE),
    ]),
    (Category.SALON, [
        re.compile(r"\bsalon\b", re.IGNORECASE),
        re.compile(r"\bspa\b", re.IGNORECASE),
        re.compile(r"\bhair\b", re.IGNORECASE),
        re.compile(r"\bnail(s)?\b", re.IGNORECASE),
        re.compile(r"\bbarber\b", re.IGNORECASE),
        re.compile(r"\bbeauty\b", re.IGNORECASE),
    ]),
    (Category.CAFE, [
        re.compile(r"\bcoffee\b", re.IGNORECASE),
        re.compile(r"\bcafe\b", re.IGNORECASE),
        re.compile(r"\btea\b", re.IGNORECASE),
        re.compile(r"\blatte\b", re.IGNORECASE),
        re.compile(r"\bespresso\b", re.IGNORECASE),
        re.compile(r"\bsmoothie\b", re.IGNORECASE),
    ]),
    (Category.FOOD, [
        re.compile(r"\blunch\b", re.IGNORECASE),
        re.compile(r"\bdinner\b", re.IGNORECASE),
        re.compile(r"\brestaurant\b", re.IGNORECASE),
        re.compile(r"\bmeal\b", re.IGNORECASE),
        re.compile(r"\bbakery\b", re.IGNORECASE),
        re.compile(r"\bbite\b", re.IGNORECASE),
    ]),
    (Category.RETAIL, [
        re.compile(r"\bretail\b", re.IGNORECASE),
        re.compile(r"\bboutique\b", re.IGNORECASE),
        re.compile(r"\bshop\b", re.IGNORECASE),
        re.compile(r"\bgift\b", re.IGNORECASE),
        re.compile(r"\bstore\b", re.IGNORECASE),
    ]),
    (Category.SERVICE, [
        re.compile(r"\bservice\b", re.IGNORECASE),
        re.compile(r"\brepair\b", re.IGNORECASE),
        re.compile(r"\bappointment\b", re.IGNORECASE),
        re.compile(r"\bdetailing\b", re.IGNORECASE),
        re.compile(r"\bclinic\b", re.IGNORECASE),
    ]),
]

INFERENCE_ORDER: tuple[Category, ...] = tuple(category for category, _ in _CATEGORY_HINTS)

_BUSINESS_TYPE_MAP: dict[str, Category] = {
    "loaded-tea": Category.CAFE,
    "cafe": Category.CAFE,
    "fitness-hybrid": Category.FITNESS,
    "gym": Category.FITNESS,
    "salon": Category.SALON,
    "retail": Category.RETAIL,
    "restaurant": Category.FOOD,
    "food": Category.FOOD,
    "service": Category.SERVICE,
    "barber": Category.SERVICE,
    "auto": Category.SERVICE,
}


def category_label(category: Category) -> str:
    return CATEGORY_LABELS[category]


def infer_category(text: str) -> Category | None:
    """Return the first category whose rule matches text, or None.

    Callers must not reinforce the graph on a None result.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    for category, patterns in _CATEGORY_HINTS:
        if any(pattern.search(raw) for pattern in patterns):
            return category
    return None


def category_from_business_type(business_type: str) -> Category:
    """Map a brand's business type to its graph category. Unknown types -> other."""
    return _BUSINESS_TYPE_MAP.get((business_type or "").strip().lower(), Category.OTHER)


def parse_category(raw: object) -> Category | None:
    """Lenient parse used on external feeds. 'mixed' (pulse taxonomy) maps to other."""
    if isinstance(raw, Category):
        return raw
    if not isinstance(raw, str):
        return None
    value = raw.strip().lower()
    if value == "mixed":
        return Category.OTHER
    try:
        return Category(value)
    except ValueError:
        return None
