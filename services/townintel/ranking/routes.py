"""
Micro-route ranking: turn a town's weighted category graph into ranked
three-stop walks for one day-part window.

Pipeline (pure, no I/O; callers pass a snapshot):

    edges --season overlay--> adjusted edges
          --two-hop expansion--> candidates [A, B, C]
          --trend + busy/slow adjustment--> weights
          --dedup by A>B>C, sort desc--> top N

A dead-end second stop (B has no outgoing edges) yields the degenerate
route [A, B, B] with a synthesized second hop of max(0.2, w(A->B) * 0.5).

Ordering note: the season overlay is applied to base edge weights before
any trend or demand adjustment so the multipliers compound on top of it.

All tunable constants are declared at the top of this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from services.townintel.graph.models import (
    EDGE_WEIGHT_MIN,
    DailyGoal,
    DemandModel,
    RouteCandidate,
    SeasonTag,
    SeasonWeightDelta,
    Trend,
)
from services.townintel.graph.taxonomy import Category
from services.townintel.graph.windows import Window, window_contains_slot, window_label

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

OUTGOING_FANOUT = 6          # first-hop adjacency kept per category
SECOND_HOP_FANOUT = 4        # second hops expanded per edge
DEAD_END_MIN_WEIGHT = 0.2
DEAD_END_RATIO = 0.5

TREND_BONUS: dict[Trend, float] = {
    Trend.UP: 0.45,
    Trend.STEADY: 0.10,
    Trend.DOWN: -0.20,
}

BUSY_STEP = 0.07
BUSY_CAP = 0.40
SLOW_STEP = 0.05
SLOW_CAP = 0.35
SLOW_FLOOR = 0.60

ROUTES_PER_WINDOW = 8

GOAL_SLOW_HIT_BONUS = 0.45
GOAL_TREND_BONUS: dict[Trend, float] = {
    Trend.DOWN: 0.25,
    Trend.STEADY: 0.08,
}
GOAL_WHY_SUFFIX = " Tuned for slower-window opportunity."


class EdgeLike(Protocol):
    from_category: Category
    to_category: Category
    weight: float


@dataclass(frozen=True)
class WeightedEdge:
    from_category: Category
    to_category: Category
    weight: float


# ---------------------------------------------------------------------------
# Demand signals
# ---------------------------------------------------------------------------


def busy_slow_counts(window: Window, demand: DemandModel | None) -> tuple[int, int]:
    """Number of busy and slow demand slots that fall inside window."""
    if demand is None:
        return 0, 0
    busy = sum(
        1 for slot in demand.busy_slots
        if window_contains_slot(window, slot.day_of_week, slot.hour)
    )
    slow = sum(
        1 for slot in demand.slow_slots
        if window_contains_slot(window, slot.day_of_week, slot.hour)
    )
    return busy, slow


def category_trend_adjust(route: Sequence[Category], demand: DemandModel | None) -> float:
    """Per-position trend bonus. A repeated category counts each time."""
    if demand is None:
        return 0.0
    adjust = 0.0
    for category in route:
        trend = demand.category_trends.get(category)
        if trend is not None:
            adjust += TREND_BONUS[trend]
    return adjust


def _demand_multiplier(busy_hits: int, slow_hits: int) -> float:
    multiplier = 1.0
    if busy_hits > 0:
        multiplier *= 1 + min(BUSY_CAP, busy_hits * BUSY_STEP)
    if slow_hits > 0:
        multiplier *= max(SLOW_FLOOR, 1 - min(SLOW_CAP, slow_hits * SLOW_STEP))
    return multiplier


def build_why(window: Window, busy_hits: int, slow_hits: int) -> str:
    label = window_label(window).lower()
    if window is Window.WEEKEND:
        return "Weekend downtown browsing loop with practical local stops."
    if busy_hits > slow_hits:
        return f"Strong {label} momentum and practical errand flow."
    if slow_hits > 0:
        return f"{label} window with lighter pace and easy local sequence."
    return f"Natural {label} stop sequence locals can follow."


# ---------------------------------------------------------------------------
# Season overlay
# ---------------------------------------------------------------------------


def apply_season_weight_deltas(
    edges: Iterable[EdgeLike],
    deltas: Iterable[SeasonWeightDelta],
    active_tags: Iterable[SeasonTag],
    window: Window,
) -> list[WeightedEdge]:
    """Add the summed deltas of every active tag for this window to each edge.

    Results are floored at 0.01 and rounded to 3 decimals. Deltas for edges
    that do not exist are ignored; the overlay never creates edges.
    """
    tags = set(active_tags)
    delta_by_edge: dict[tuple[Category, Category], float] = {}
    for delta in deltas:
        if delta.season_tag not in tags or delta.window != window:
            continue
        key = (delta.from_category, delta.to_category)
        delta_by_edge[key] = delta_by_edge.get(key, 0.0) + delta.weight_delta

    return [
        WeightedEdge(
            from_category=edge.from_category,
            to_category=edge.to_category,
            weight=max(
                EDGE_WEIGHT_MIN,
                round(edge.weight + delta_by_edge.get((edge.from_category, edge.to_category), 0.0), 3),
            ),
        )
        for edge in edges
    ]


# ---------------------------------------------------------------------------
# Candidate generation
# ---------------------------------------------------------------------------


def build_route_candidates(
    edges: Sequence[EdgeLike],
    window: Window,
    demand: DemandModel | None,
) -> list[RouteCandidate]:
    """All deduplicated candidates for window, sorted by weight descending."""
    outgoing: dict[Category, list[tuple[Category, float]]] = {}
    for edge in edges:
        outgoing.setdefault(edge.from_category, []).append((edge.to_category, edge.weight))
    for source, hops in outgoing.items():
        outgoing[source] = sorted(hops, key=lambda hop: hop[1], reverse=True)[:OUTGOING_FANOUT]

    busy_hits, slow_hits = busy_slow_counts(window, demand)
    multiplier = _demand_multiplier(busy_hits, slow_hits)
    why = build_why(window, busy_hits, slow_hits)

    by_key: dict[tuple[Category, Category, Category], RouteCandidate] = {}

    def _offer(route: tuple[Category, Category, Category], base: float) -> None:
        adjusted = (base + category_trend_adjust(route, demand)) * multiplier
        candidate = RouteCandidate(
            route=route,
            why=why,
            weight=max(EDGE_WEIGHT_MIN, round(adjusted, 2)),
        )
        existing = by_key.get(route)
        if existing is None or candidate.weight > existing.weight:
            by_key[route] = candidate

    for edge in edges:
        second_hops = outgoing.get(edge.to_category, [])
        if not second_hops:
            synthesized = max(DEAD_END_MIN_WEIGHT, edge.weight * DEAD_END_RATIO)
            _offer((edge.from_category, edge.to_category, edge.to_category), edge.weight + synthesized)
            continue
        for to_category, weight in second_hops[:SECOND_HOP_FANOUT]:
            _offer((edge.from_category, edge.to_category, to_category), edge.weight + weight)

    return sorted(by_key.values(), key=lambda candidate: candidate.weight, reverse=True)


def rank_window(
    edges: Sequence[EdgeLike],
    window: Window,
    demand: DemandModel | None = None,
    season_deltas: Iterable[SeasonWeightDelta] = (),
    season_tags: Iterable[SeasonTag] = (),
    limit: int = ROUTES_PER_WINDOW,
) -> list[RouteCandidate]:
    """Season overlay, then candidate ranking. Returns the top `limit` routes."""
    adjusted = apply_season_weight_deltas(edges, season_deltas, season_tags, window)
    return build_route_candidates(adjusted, window, demand)[: max(1, limit)]


# ---------------------------------------------------------------------------
# Caller intent
# ---------------------------------------------------------------------------


def adjust_routes_for_goal(
    routes: Sequence[RouteCandidate],
    goal: DailyGoal,
    window: Window,
    demand: DemandModel | None,
) -> list[RouteCandidate]:
    """Re-rank for a caller goal.

    Only slow_hours with at least one slow hit in window changes anything;
    every other combination returns the routes as given.
    """
    if goal is not DailyGoal.SLOW_HOURS or demand is None:
        return list(routes)
    _, slow_hits = busy_slow_counts(window, demand)
    if slow_hits == 0:
        return list(routes)

    adjusted: list[RouteCandidate] = []
    for candidate in routes:
        weight = candidate.weight + slow_hits * GOAL_SLOW_HIT_BONUS
        for category in candidate.route:
            trend = demand.category_trends.get(category)
            if trend is not None:
                weight += GOAL_TREND_BONUS.get(trend, 0.0)
        adjusted.append(RouteCandidate(
            route=candidate.route,
            why=candidate.why + GOAL_WHY_SUFFIX,
            weight=round(weight, 2),
        ))
    return sorted(adjusted, key=lambda candidate: candidate.weight, reverse=True)
