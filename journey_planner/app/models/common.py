"""Common types and enums shared across all models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LocationPoint(BaseModel):
    """Geographic coordinates (WGS84)."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class TravelMode(str, Enum):
    """Travel mode between stops."""

    walking = "walking"
    transit = "transit"
    driving = "driving"


class JobStatus(str, Enum):
    """Itinerary job status. Completed and failed are terminal."""

    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.processing


class FailureReason(str, Enum):
    """Why an itinerary job failed."""

    commute_exceeds_budget = "commute_exceeds_budget"
    no_pois_in_isochrone = "no_pois_in_isochrone"
    no_open_pois = "no_open_pois"
    no_feasible_stops = "no_feasible_stops"
    routing_failed = "routing_failed"
    internal_error = "internal_error"


# Human-readable messages persisted alongside the failure reason
FAILURE_MESSAGES: dict[FailureReason, str] = {
    FailureReason.commute_exceeds_budget: (
        "The travel time between start and end points exceeds the available time budget"
    ),
    FailureReason.no_pois_in_isochrone: "No points of interest found within the reachable area",
    FailureReason.no_open_pois: "No points of interest are open during the requested time window",
    FailureReason.no_feasible_stops: "No point of interest fits within the remaining time budget",
    FailureReason.routing_failed: "Failed to calculate routes between locations",
    FailureReason.internal_error: "An internal error occurred while processing the request",
}
