"""Map & routing provider: protocol plus an Azure Maps implementation over httpx."""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Any, Protocol

import httpx

from journey_planner.app.models.common import LocationPoint, TravelMode
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

logger = logging.getLogger(__name__)

API_VERSION = "1.0"

# Azure Maps caps search radius at 50 km
MAX_SEARCH_RADIUS_METERS = 50_000

TRANSIT_STOP_RADIUS_METERS = 1_000

AZURE_TRAVEL_MODES: dict[TravelMode, str] = {
    TravelMode.walking: "pedestrian",
    TravelMode.transit: "bus",
    TravelMode.driving: "car",
}


class MapsProviderError(Exception):
    """Provider answered but the payload was unusable."""

    pass


class MapsProvider(Protocol):
    """Map, routing and POI search capability consumed by the planner."""

    async def get_time_zone(self, point: LocationPoint) -> str:
        """Return the IANA time zone id for a point."""
        ...

    async def get_route(
        self, origin: LocationPoint, destination: LocationPoint, mode: TravelMode
    ) -> RouteResult:
        """Route a single leg."""
        ...

    async def is_transit_available(self, point: LocationPoint) -> bool:
        """Whether public transport stops exist near a point."""
        ...

    async def get_isochrone(
        self, center: LocationPoint, mode: TravelMode, minutes: int
    ) -> IsochroneResult | None:
        """Area reachable from center within minutes, or None if unavailable."""
        ...

    async def get_poi_category_tree(self, language: str) -> list[PoiCategory]:
        """Full POI category taxonomy."""
        ...

    async def search_pois_by_category(
        self,
        center: LocationPoint,
        category_ids: list[str],
        radius_km: float,
        limit: int,
    ) -> list[PointOfInterest]:
        """POIs in the given categories around center."""
        ...

    async def search_pois_fuzzy(
        self,
        center: LocationPoint,
        terms: list[str],
        radius_km: float,
        limit: int,
    ) -> list[PointOfInterest]:
        """POIs matching free-text terms around center."""
        ...

    async def reverse_geocode(self, point: LocationPoint, language: str) -> ReverseGeocodeResult:
        """Locality and formatted address for a point."""
        ...

    async def search_locations(
        self,
        query: str,
        language: str,
        limit: int,
        near: LocationPoint | None = None,
    ) -> list[GeocodeMatch]:
        """Places and addresses matching free text, optionally biased toward near."""
        ...


class AzureMapsProvider:
    """Azure Maps REST implementation with subscription key authentication."""

    def __init__(
        self,
        subscription_key: str,
        base_url: str = "https://atlas.microsoft.com",
        client: httpx.AsyncClient | None = None,
        transit_stop_category_id: str = "9942",
    ) -> None:
        """Initialize provider.

        Args:
            subscription_key: Azure Maps subscription key
            base_url: Azure Maps base URL
            client: Optional httpx client (for testing with mocks)
            transit_stop_category_id: Category used by the transit availability check
        """
        if not subscription_key:
            raise ValueError("Azure Maps subscription key is required")

        self._subscription_key = subscription_key
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._transit_stop_category_id = transit_stop_category_id

    async def aclose(self) -> None:
        """Close the underlying client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        query = {"api-version": API_VERSION, "subscription-key": self._subscription_key, **params}
        response = await self._client.get(f"{self._base_url}{path}", params=query)
        response.raise_for_status()
        return response.json()

    async def get_time_zone(self, point: LocationPoint) -> str:
        data = await self._get(
            "/timezone/byCoordinates/json",
            {"query": f"{point.lat},{point.lon}"},
        )
        zones = data.get("TimeZones") or []
        if not zones or not zones[0].get("Id"):
            raise MapsProviderError(f"No time zone for {point.lat},{point.lon}")
        return zones[0]["Id"]

    async def get_route(
        self, origin: LocationPoint, destination: LocationPoint, mode: TravelMode
    ) -> RouteResult:
        data = await self._get(
            "/route/directions/json",
            {
                "query": f"{origin.lat},{origin.lon}:{destination.lat},{destination.lon}",
                "travelMode": AZURE_TRAVEL_MODES[mode],
            },
        )
        routes = data.get("routes") or []
        if not routes:
            raise MapsProviderError("Route response contained no routes")

        route = routes[0]
        summary = route["summary"]
        points = [
            LocationPoint(lat=p["latitude"], lon=p["longitude"])
            for leg in route.get("legs", [])
            for p in leg.get("points", [])
        ]
        return RouteResult(
            distance_meters=int(summary["lengthInMeters"]),
            # Round up so stitched legs never under-count the budget
            travel_time_minutes=math.ceil(summary["travelTimeInSeconds"] / 60),
            points=points,
        )

    async def is_transit_available(self, point: LocationPoint) -> bool:
        data = await self._get(
            "/search/nearby/json",
            {
                "lat": point.lat,
                "lon": point.lon,
                "radius": TRANSIT_STOP_RADIUS_METERS,
                "limit": 1,
                "categorySet": self._transit_stop_category_id,
            },
        )
        return bool(data.get("results"))

    async def get_isochrone(
        self, center: LocationPoint, mode: TravelMode, minutes: int
    ) -> IsochroneResult | None:
        data = await self._get(
            "/route/range/json",
            {
                "query": f"{center.lat},{center.lon}",
                "timeBudgetInSec": minutes * 60,
                "travelMode": AZURE_TRAVEL_MODES[mode],
            },
        )
        reachable = data.get("reachableRange") or {}
        boundary = reachable.get("boundary") or []
        if len(boundary) < 3:
            return None

        return IsochroneResult(
            boundary=[LocationPoint(lat=p["latitude"], lon=p["longitude"]) for p in boundary],
            center=center,
            mode=mode,
            time_minutes=minutes,
        )

    async def get_poi_category_tree(self, language: str) -> list[PoiCategory]:
        data = await self._get("/search/poi/category/tree/json", {"language": language})
        return [
            PoiCategory(
                id=str(c["id"]),
                name=c.get("name", ""),
                child_category_ids=[str(child) for child in c.get("childCategoryIds", [])],
                synonyms=c.get("synonyms", []),
            )
            for c in data.get("poiCategories", [])
        ]

    async def search_pois_by_category(
        self,
        center: LocationPoint,
        category_ids: list[str],
        radius_km: float,
        limit: int,
    ) -> list[PointOfInterest]:
        data = await self._get(
            "/search/nearby/json",
            {
                "lat": center.lat,
                "lon": center.lon,
                "radius": _radius_meters(radius_km),
                "limit": limit,
                "categorySet": ",".join(category_ids),
                "openingHours": "nextSevenDays",
            },
        )
        return _parse_search_results(data)

    async def search_pois_fuzzy(
        self,
        center: LocationPoint,
        terms: list[str],
        radius_km: float,
        limit: int,
    ) -> list[PointOfInterest]:
        # Fuzzy search takes one query string; run one search per term and merge
        merged: dict[str, PointOfInterest] = {}
        for term in terms:
            data = await self._get(
                "/search/fuzzy/json",
                {
                    "query": term,
                    "lat": center.lat,
                    "lon": center.lon,
                    "radius": _radius_meters(radius_km),
                    "limit": limit,
                    "idxSet": "POI",
                    "openingHours": "nextSevenDays",
                },
            )
            for poi in _parse_search_results(data):
                merged.setdefault(poi.id, poi)
            if len(merged) >= limit:
                break

        return list(merged.values())[:limit]

    async def reverse_geocode(self, point: LocationPoint, language: str) -> ReverseGeocodeResult:
        data = await self._get(
            "/search/address/reverse/json",
            {"query": f"{point.lat},{point.lon}", "language": language},
        )
        addresses = data.get("addresses") or []
        if not addresses:
            return ReverseGeocodeResult()

        address = addresses[0].get("address") or {}
        return ReverseGeocodeResult(
            locality=address.get("municipality") or None,
            formatted_address=address.get("freeformAddress") or None,
            country_code=address.get("countryCode") or None,
        )

    async def search_locations(
        self,
        query: str,
        language: str,
        limit: int,
        near: LocationPoint | None = None,
    ) -> list[GeocodeMatch]:
        params: dict[str, Any] = {"query": query, "language": language, "limit": limit}
        if near is not None:
            params.update(lat=near.lat, lon=near.lon)

        data = await self._get("/search/fuzzy/json", params)

        matches: list[GeocodeMatch] = []
        for index, result in enumerate(data.get("results", [])):
            position = result.get("position")
            if not position:
                continue
            poi_name = (result.get("poi") or {}).get("name")
            address = result.get("address") or {}
            matches.append(
                GeocodeMatch(
                    id=f"result_{index}",
                    type="POI" if poi_name else "Address",
                    name=poi_name or address.get("freeformAddress") or "Unknown",
                    formatted_address=address.get("freeformAddress", ""),
                    locality=address.get("municipality", ""),
                    country_code=address.get("countryCode", ""),
                    position=LocationPoint(lat=position["lat"], lon=position["lon"]),
                )
            )
        return matches


def _radius_meters(radius_km: float) -> int:
    return min(int(radius_km * 1000), MAX_SEARCH_RADIUS_METERS)


def _parse_search_results(data: dict[str, Any]) -> list[PointOfInterest]:
    """Convert Azure Maps search results into POIs, skipping non-POI hits."""
    pois: list[PointOfInterest] = []
    for result in data.get("results", []):
        poi = result.get("poi")
        position = result.get("position")
        if not poi or not position or not result.get("id"):
            continue

        categories = poi.get("categories") or []
        pois.append(
            PointOfInterest(
                id=str(result["id"]),
                name=poi.get("name", ""),
                address=(result.get("address") or {}).get("freeformAddress", ""),
                lat=position["lat"],
                lon=position["lon"],
                category=categories[0] if categories else None,
                tags=categories[1:],
                opening_hours=_parse_opening_hours(poi.get("openingHours")),
            )
        )
    return pois


def _parse_opening_hours(raw: dict[str, Any] | None) -> OpeningHours | None:
    """Parse the nextSevenDays time ranges into a weekly schedule.

    Ranges are split at midnight so every entry covers a single calendar day.
    A range ending at or before its start on the same date runs overnight;
    an end equal to the start one day later is open around the clock.
    """
    if not raw or not raw.get("timeRanges"):
        return None

    schedule: list[DaySchedule] = []
    for time_range in raw["timeRanges"]:
        opens = _moment(time_range["startTime"])
        closes = _moment(time_range["endTime"])
        if closes <= opens:
            closes += timedelta(days=1)
        schedule.extend(_split_by_day(opens, closes))
    return OpeningHours(schedule=schedule)


def _moment(raw: dict[str, Any]) -> datetime:
    # Azure reports end of day as hour 24
    day = datetime.combine(date.fromisoformat(raw["date"]), time())
    return day + timedelta(hours=raw.get("hour", 0), minutes=raw.get("minute", 0))


def _split_by_day(opens: datetime, closes: datetime) -> list[DaySchedule]:
    days: list[DaySchedule] = []
    current = opens
    # nextSevenDays never spans more than a week
    while current < closes and len(days) < 7:
        midnight = datetime.combine(current.date() + timedelta(days=1), time())
        days.append(
            DaySchedule(
                day_of_week=(current.weekday() + 1) % 7,
                open_time=current.time(),
                close_time=closes.time() if closes < midnight else time.max,
            )
        )
        current = midnight
    return days
