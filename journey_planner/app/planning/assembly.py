"""Build the final itinerary from the selected stops."""

from journey_planner.app.models.common import FailureReason, LocationPoint, TravelMode
from journey_planner.app.models.itinerary import (
    ItineraryLeg,
    ItineraryResult,
    ItineraryStop,
    ItinerarySummary,
)
from journey_planner.app.models.provider import PointOfInterest
from journey_planner.app.planning.errors import PlanningError
from journey_planner.app.planning.selection import RouteLookup
from journey_planner.app.tools.executor import TOOL_FAILURES

START_NAME = "Start"
END_NAME = "End"


async def assemble_itinerary(
    stops: list[PointOfInterest],
    *,
    start: LocationPoint,
    end: LocationPoint,
    mode: TravelMode,
    language: str,
    budget_minutes: int,
    descriptions: dict[str, str],
    route: RouteLookup,
) -> ItineraryResult:
    """Route start -> stops -> end and lay out cumulative offsets.

    Offsets are minutes from journey start; each stop is entered at the
    arrival of its inbound leg and left after its dwell time.

    Raises:
        PlanningError: routing_failed when a leg cannot be routed
    """
    waypoints: list[tuple[str, LocationPoint]] = [
        (START_NAME, start),
        *((poi.name, poi.location) for poi in stops),
        (END_NAME, end),
    ]

    legs: list[ItineraryLeg] = []
    itinerary_stops: list[ItineraryStop] = []
    clock = 0
    total_distance = 0
    total_travel = 0
    total_visit = 0

    for index in range(len(waypoints) - 1):
        from_name, origin = waypoints[index]
        to_name, destination = waypoints[index + 1]

        try:
            leg_route = await route(origin, destination, mode)
        except TOOL_FAILURES as e:
            raise PlanningError(
                FailureReason.routing_failed,
                f"Failed to route leg {from_name} -> {to_name}",
            ) from e

        depart = clock
        clock += leg_route.travel_time_minutes
        legs.append(
            ItineraryLeg(
                from_name=from_name,
                to_name=to_name,
                mode=mode,
                distance_meters=leg_route.distance_meters,
                travel_minutes=leg_route.travel_time_minutes,
                depart_from_journey_start=depart,
                arrive_from_journey_start=clock,
            )
        )
        total_distance += leg_route.distance_meters
        total_travel += leg_route.travel_time_minutes

        if index < len(stops):
            poi = stops[index]
            arrive = clock
            clock += poi.estimated_min_visit_minutes
            total_visit += poi.estimated_min_visit_minutes
            itinerary_stops.append(
                ItineraryStop(
                    id=poi.id,
                    name=poi.name,
                    address=poi.address,
                    lat=poi.lat,
                    lon=poi.lon,
                    description=descriptions.get(poi.id) or poi.description or poi.name,
                    visit_minutes=poi.estimated_min_visit_minutes,
                    arrive_from_journey_start=arrive,
                    depart_from_journey_start=clock,
                    category=poi.category,
                    rating=poi.rating,
                )
            )

    summary = ItinerarySummary(
        mode=mode,
        language=language,
        time_budget_minutes=budget_minutes,
        total_distance_meters=total_distance,
        total_travel_minutes=total_travel,
        total_visit_minutes=total_visit,
        stops_count=len(itinerary_stops),
    )
    return ItineraryResult(summary=summary, legs=legs, stops=itinerary_stops)
