"""Provider result models - shapes returned by the map & routing provider."""

from datetime import datetime, time

from pydantic import BaseModel, Field

from journey_planner.app.models.common import LocationPoint, TravelMode


class PoiCategory(BaseModel):
    """Node of the provider's POI category taxonomy."""

    id: str
    name: str
    child_category_ids: list[str] = Field(default_factory=list)
    synonyms: list[str] = Field(default_factory=list)

    @property
    def all_labels(self) -> list[str]:
        return [self.name, *self.synonyms]


class DaySchedule(BaseModel):
    """Opening window for one day of the week (0 = Sunday).

    A close_time earlier than open_time means the window runs past midnight;
    the part after midnight belongs to the following day.
    """

    day_of_week: int = Field(..., ge=0, le=6)
    is_open: bool = True
    open_time: time
    close_time: time

    @property
    def runs_past_midnight(self) -> bool:
        return self.close_time < self.open_time

    def covers(self, moment: time) -> bool:
        """Whether moment falls in this day's own part of the window."""
        if not self.is_open:
            return False
        if self.runs_past_midnight:
            return moment >= self.open_time
        return self.open_time <= moment <= self.close_time

    def covers_next_morning(self, moment: time) -> bool:
        """Whether an overnight window still covers moment on the following day."""
        return self.is_open and self.runs_past_midnight and moment <= self.close_time


class OpeningHours(BaseModel):
    """Weekly opening schedule."""

    schedule: list[DaySchedule]

    def is_open_at(self, moment: datetime) -> bool:
        today = (moment.weekday() + 1) % 7
        yesterday = (today - 1) % 7
        clock = moment.time()
        for day in self.schedule:
            if day.day_of_week == today and day.covers(clock):
                return True
            if day.day_of_week == yesterday and day.covers_next_morning(clock):
                return True
        return False


class PointOfInterest(BaseModel):
    """Candidate stop found by category or fuzzy search."""

    id: str
    name: str
    address: str = ""
    lat: float
    lon: float
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    description: str | None = None
    rating: float | None = None
    review_count: int | None = None
    opening_hours: OpeningHours | None = None
    # Set during planning, clamped to the configured dwell floor/ceiling
    estimated_min_visit_minutes: int = 0

    @property
    def location(self) -> LocationPoint:
        return LocationPoint(lat=self.lat, lon=self.lon)

    def is_open_at(self, moment: datetime) -> bool:
        """POIs without opening-hours data are assumed open."""
        if self.opening_hours is None:
            return True
        return self.opening_hours.is_open_at(moment)


class RouteResult(BaseModel):
    """One routed leg."""

    distance_meters: int
    travel_time_minutes: int
    points: list[LocationPoint] = Field(default_factory=list)


class IsochroneResult(BaseModel):
    """Area reachable from a center within a time budget."""

    boundary: list[LocationPoint]
    center: LocationPoint
    mode: TravelMode
    time_minutes: int


class ReverseGeocodeResult(BaseModel):
    """Locality lookup for a coordinate."""

    locality: str | None = None
    formatted_address: str | None = None
    country_code: str | None = None


class GeocodeMatch(BaseModel):
    """Forward geocoding hit for a place name or address."""

    id: str
    type: str  # "POI" or "Address"
    name: str
    formatted_address: str = ""
    locality: str = ""
    country_code: str = ""
    position: LocationPoint
