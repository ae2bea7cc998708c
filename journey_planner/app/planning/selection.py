"""Greedy budget-constrained stop selection and slack redistribution."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from journey_planner.app.models.common import LocationPoint, TravelMode
from journey_planner.app.models.provider import PointOfInterest, RouteResult
from journey_planner.app.tools.executor import TOOL_FAILURES

logger = logging.getLogger(__name__)

RouteLookup = Callable[[LocationPoint, LocationPoint, TravelMode], Awaitable[RouteResult]]


@dataclass
class SelectionOutcome:
    """Accepted stops plus the bookkeeping needed to classify an empty result."""

    stops: list[PointOfInterest]
    total_minutes: int
    rejected_over_budget: int = 0
    rejected_route_failure: int = 0


async def select_stops(
    ranked: list[PointOfInterest],
    *,
    start: LocationPoint,
    end: LocationPoint,
    mode: TravelMode,
    budget_minutes: int,
    base_travel_minutes: int,
    max_pois: int,
    route: RouteLookup,
) -> SelectionOutcome:
    """Walk the ranking once, accepting candidates that keep the plan within budget.

    The running total starts at the round-trip base cost. A candidate is
    accepted when swapping the current "straight to end" leg for "via the
    candidate, then to end" keeps the projected total within budget.
    Candidates whose legs cannot be routed are skipped. Selection stops once
    max_pois stops are accepted.
    """
    total = 2 * base_travel_minutes
    current = start
    accepted: list[PointOfInterest] = []
    seen: set[str] = set()
    outcome = SelectionOutcome(stops=accepted, total_minutes=total)

    for poi in ranked:
        if len(accepted) >= max_pois:
            break
        if poi.id in seen:
            continue
        seen.add(poi.id)

        try:
            current_to_end = await route(current, end, mode)
            to_candidate = await route(current, poi.location, mode)
            candidate_to_end = await route(poi.location, end, mode)
        except TOOL_FAILURES as e:
            logger.warning("Skipping %s: route lookup failed (%s)", poi.id, type(e).__name__)
            outcome.rejected_route_failure += 1
            continue

        projected = (
            total
            - current_to_end.travel_time_minutes
            + to_candidate.travel_time_minutes
            + poi.estimated_min_visit_minutes
            + candidate_to_end.travel_time_minutes
        )

        if projected > budget_minutes:
            logger.debug(
                "Rejecting %s: projected %d > budget %d", poi.id, projected, budget_minutes
            )
            outcome.rejected_over_budget += 1
            continue

        accepted.append(poi)
        total = projected
        current = poi.location

    outcome.total_minutes = total
    return outcome


def redistribute_slack(
    stops: list[PointOfInterest], budget_minutes: int, total_minutes: int
) -> int:
    """Spread unused minutes evenly over stop dwell times.

    Returns the minutes added to each stop. Opening hours are not re-checked
    after the extension.
    """
    if not stops:
        return 0

    slack = budget_minutes - total_minutes
    if slack <= 0:
        return 0

    per_stop = slack // len(stops)
    for poi in stops:
        poi.estimated_min_visit_minutes += per_stop
    return per_stop
