"""Itinerary models - final output stored on the job and served to callers."""

from pydantic import BaseModel, Field

from journey_planner.app.models.common import TravelMode


class ItinerarySummary(BaseModel):
    """Aggregate totals for a planned itinerary."""

    mode: TravelMode
    language: str
    time_budget_minutes: int
    total_distance_meters: int
    total_travel_minutes: int
    total_visit_minutes: int
    stops_count: int


class ItineraryLeg(BaseModel):
    """Travel between two consecutive points.

    Offsets are minutes from journey start.
    """

    from_name: str = Field(..., alias="from")
    to_name: str = Field(..., alias="to")
    mode: TravelMode
    distance_meters: int
    travel_minutes: int
    depart_from_journey_start: int
    arrive_from_journey_start: int

    model_config = {"populate_by_name": True}


class ItineraryStop(BaseModel):
    """Snapshot of a selected POI with its visit window."""

    id: str
    name: str
    address: str
    lat: float
    lon: float
    description: str
    visit_minutes: int
    arrive_from_journey_start: int
    depart_from_journey_start: int
    category: str | None = None
    rating: float | None = None


class ItineraryResult(BaseModel):
    """Complete itinerary: len(legs) == len(stops) + 1."""

    summary: ItinerarySummary
    legs: list[ItineraryLeg]
    stops: list[ItineraryStop]
