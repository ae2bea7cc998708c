"""Models package - re-exports for convenience."""

from journey_planner.app.models.common import (
    FAILURE_MESSAGES,
    FailureReason,
    JobStatus,
    LocationPoint,
    TravelMode,
)
from journey_planner.app.models.itinerary import (
    ItineraryLeg,
    ItineraryResult,
    ItineraryStop,
    ItinerarySummary,
)
from journey_planner.app.models.provider import (
    DaySchedule,
    GeocodeMatch,
    IsochroneResult,
    OpeningHours,
    PoiCategory,
    PointOfInterest,
    ReverseGeocodeResult,
    RouteResult,
)
from journey_planner.app.models.request import ItineraryRequest, parse_interests

__all__ = [
    # Common
    "LocationPoint",
    "TravelMode",
    "JobStatus",
    "FailureReason",
    "FAILURE_MESSAGES",
    # Request
    "ItineraryRequest",
    "parse_interests",
    # Provider results
    "PoiCategory",
    "DaySchedule",
    "GeocodeMatch",
    "OpeningHours",
    "PointOfInterest",
    "RouteResult",
    "IsochroneResult",
    "ReverseGeocodeResult",
    # Itinerary
    "ItineraryResult",
    "ItinerarySummary",
    "ItineraryLeg",
    "ItineraryStop",
]
