"""Request models - user input for itinerary planning."""

from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from journey_planner.app.models.common import LocationPoint, TravelMode


class ItineraryRequest(BaseModel):
    """User request for a time-boxed itinerary between two points."""

    start: LocationPoint
    end: LocationPoint
    mode: TravelMode
    max_duration_minutes: Annotated[int, Field(gt=0)]
    interests: str = Field(..., description="Free text, comma-separated")
    language: str = "en"

    @field_validator("language")
    @classmethod
    def normalize_language(cls, v: str) -> str:
        """Store language codes lowercase."""
        return v.strip().lower()

    @property
    def interest_terms(self) -> list[str]:
        """Split interests on commas, dropping blanks."""
        return parse_interests(self.interests)


def parse_interests(interests: str) -> list[str]:
    """Split a comma-separated interest string into trimmed terms."""
    return [term.strip() for term in interests.split(",") if term.strip()]
