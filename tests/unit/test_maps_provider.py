"""Tests for the Azure Maps provider."""

from datetime import UTC, datetime, time

import httpx
import pytest

from journey_planner.app.models.common import LocationPoint, TravelMode
from journey_planner.app.models.provider import DaySchedule, OpeningHours
from journey_planner.app.providers.maps import (
    AzureMapsProvider,
    MapsProviderError,
    _parse_opening_hours,
)

PARIS = LocationPoint(lat=48.8566, lon=2.3522)
LOUVRE = LocationPoint(lat=48.8606, lon=2.3376)

SEARCH_RESPONSE = {
    "results": [
        {
            "type": "POI",
            "id": "g6Jpxa",
            "poi": {
                "name": "Musée du Louvre",
                "categories": ["museum", "important tourist attraction"],
                "openingHours": {
                    "mode": "nextSevenDays",
                    "timeRanges": [
                        {
                            "startTime": {"date": "2026-06-10", "hour": 9, "minute": 0},
                            "endTime": {"date": "2026-06-10", "hour": 18, "minute": 0},
                        },
                        {
                            "startTime": {"date": "2026-06-12", "hour": 9, "minute": 0},
                            "endTime": {"date": "2026-06-12", "hour": 24, "minute": 0},
                        },
                    ],
                },
            },
            "address": {"freeformAddress": "Rue de Rivoli, 75001 Paris"},
            "position": {"lat": 48.8606, "lon": 2.3376},
        },
        {
            "type": "Geography",
            "id": "no-poi",
            "position": {"lat": 48.0, "lon": 2.0},
        },
    ]
}


def make_provider(handler) -> tuple[AzureMapsProvider, list[httpx.Request]]:
    """Provider wired to a mock transport that records requests."""
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return AzureMapsProvider("test-key", client=client), requests


def test_requires_subscription_key() -> None:
    with pytest.raises(ValueError, match="subscription key"):
        AzureMapsProvider("")


@pytest.mark.asyncio
async def test_get_route_rounds_minutes_up() -> None:
    """Route summary is converted and the key and api-version are sent."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "routes": [
                    {
                        "summary": {"lengthInMeters": 1520, "travelTimeInSeconds": 1201},
                        "legs": [
                            {
                                "points": [
                                    {"latitude": 48.8566, "longitude": 2.3522},
                                    {"latitude": 48.8606, "longitude": 2.3376},
                                ]
                            }
                        ],
                    }
                ]
            },
        )

    provider, requests = make_provider(handler)
    route = await provider.get_route(PARIS, LOUVRE, TravelMode.walking)

    assert route.distance_meters == 1520
    assert route.travel_time_minutes == 21
    assert len(route.points) == 2

    params = requests[0].url.params
    assert requests[0].url.path == "/route/directions/json"
    assert params["subscription-key"] == "test-key"
    assert params["api-version"] == "1.0"
    assert params["travelMode"] == "pedestrian"
    assert params["query"] == "48.8566,2.3522:48.8606,2.3376"


@pytest.mark.asyncio
async def test_get_route_without_routes_raises() -> None:
    provider, _ = make_provider(lambda request: httpx.Response(200, json={"routes": []}))

    with pytest.raises(MapsProviderError):
        await provider.get_route(PARIS, LOUVRE, TravelMode.driving)


@pytest.mark.asyncio
async def test_http_error_propagates() -> None:
    provider, _ = make_provider(lambda request: httpx.Response(503, json={}))

    with pytest.raises(httpx.HTTPStatusError):
        await provider.get_time_zone(PARIS)


@pytest.mark.asyncio
async def test_get_time_zone() -> None:
    provider, _ = make_provider(
        lambda request: httpx.Response(200, json={"TimeZones": [{"Id": "Europe/Paris"}]})
    )

    assert await provider.get_time_zone(PARIS) == "Europe/Paris"


@pytest.mark.asyncio
async def test_transit_check_uses_stop_category() -> None:
    provider, requests = make_provider(
        lambda request: httpx.Response(200, json={"results": [{"id": "stop"}]})
    )

    assert await provider.is_transit_available(PARIS) is True
    assert requests[0].url.params["categorySet"] == "9942"
    assert requests[0].url.params["radius"] == "1000"


@pytest.mark.asyncio
async def test_isochrone_with_short_boundary_is_none() -> None:
    provider, _ = make_provider(
        lambda request: httpx.Response(
            200,
            json={"reachableRange": {"boundary": [{"latitude": 1, "longitude": 1}]}},
        )
    )

    assert await provider.get_isochrone(PARIS, TravelMode.walking, 60) is None


@pytest.mark.asyncio
async def test_isochrone_parses_boundary() -> None:
    boundary = [
        {"latitude": 48.80, "longitude": 2.30},
        {"latitude": 48.80, "longitude": 2.40},
        {"latitude": 48.90, "longitude": 2.40},
        {"latitude": 48.90, "longitude": 2.30},
    ]
    provider, requests = make_provider(
        lambda request: httpx.Response(200, json={"reachableRange": {"boundary": boundary}})
    )

    isochrone = await provider.get_isochrone(PARIS, TravelMode.transit, 45)

    assert isochrone is not None
    assert len(isochrone.boundary) == 4
    assert isochrone.time_minutes == 45
    assert requests[0].url.params["timeBudgetInSec"] == "2700"
    assert requests[0].url.params["travelMode"] == "bus"


@pytest.mark.asyncio
async def test_category_tree() -> None:
    provider, _ = make_provider(
        lambda request: httpx.Response(
            200,
            json={
                "poiCategories": [
                    {"id": 7317, "name": "Museum", "childCategoryIds": [731701], "synonyms": []},
                    {"id": 7315, "name": "Restaurant", "synonyms": ["eatery"]},
                ]
            },
        )
    )

    categories = await provider.get_poi_category_tree("en")

    assert [c.id for c in categories] == ["7317", "7315"]
    assert categories[0].child_category_ids == ["731701"]
    assert categories[1].synonyms == ["eatery"]


@pytest.mark.asyncio
async def test_search_by_category_parses_pois_and_hours() -> None:
    provider, requests = make_provider(lambda request: httpx.Response(200, json=SEARCH_RESPONSE))

    pois = await provider.search_pois_by_category(PARIS, ["7317", "7376"], 80.0, 10)

    assert len(pois) == 1
    louvre = pois[0]
    assert louvre.id == "g6Jpxa"
    assert louvre.category == "museum"
    assert louvre.tags == ["important tourist attraction"]
    assert louvre.address == "Rue de Rivoli, 75001 Paris"

    # 2026-06-10 is a Wednesday (day 3), 24:00 closes at the end of the day
    schedule = louvre.opening_hours.schedule
    assert schedule[0].day_of_week == 3
    assert schedule[0].open_time == time(9, 0)
    assert schedule[1].close_time == time.max
    assert louvre.is_open_at(datetime(2026, 6, 10, 10, 0, tzinfo=UTC)) is True
    assert louvre.is_open_at(datetime(2026, 6, 10, 19, 0, tzinfo=UTC)) is False
    assert louvre.is_open_at(datetime(2026, 6, 11, 10, 0, tzinfo=UTC)) is False

    params = requests[0].url.params
    assert params["categorySet"] == "7317,7376"
    # Radius capped at 50 km
    assert params["radius"] == "50000"


@pytest.mark.asyncio
async def test_fuzzy_search_merges_terms() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=SEARCH_RESPONSE)

    provider, requests = make_provider(handler)

    pois = await provider.search_pois_fuzzy(PARIS, ["art", "museum"], 2.5, 10)

    assert [poi.id for poi in pois] == ["g6Jpxa"]
    assert [r.url.params["query"] for r in requests] == ["art", "museum"]
    assert requests[0].url.params["radius"] == "2500"


@pytest.mark.asyncio
async def test_reverse_geocode() -> None:
    provider, _ = make_provider(
        lambda request: httpx.Response(
            200,
            json={
                "addresses": [
                    {"address": {"municipality": "Paris", "freeformAddress": "1 Rue X, Paris"}}
                ]
            },
        )
    )

    location = await provider.reverse_geocode(PARIS, "fr")

    assert location.locality == "Paris"
    assert location.formatted_address == "1 Rue X, Paris"


@pytest.mark.asyncio
async def test_reverse_geocode_without_addresses() -> None:
    provider, _ = make_provider(lambda request: httpx.Response(200, json={"addresses": []}))

    location = await provider.reverse_geocode(PARIS, "en")

    assert location.locality is None


def time_range(start_date: str, start_hour: int, end_date: str, end_hour: int) -> dict:
    return {
        "startTime": {"date": start_date, "hour": start_hour, "minute": 0},
        "endTime": {"date": end_date, "hour": end_hour, "minute": 0},
    }


class TestOpeningHoursParsing:
    """nextSevenDays ranges that cross midnight."""

    def test_around_the_clock_range_is_open_all_day(self) -> None:
        hours = _parse_opening_hours(
            {"timeRanges": [time_range("2026-06-10", 0, "2026-06-11", 0)]}
        )

        assert hours.is_open_at(datetime(2026, 6, 10, 0, 0)) is True
        assert hours.is_open_at(datetime(2026, 6, 10, 12, 0)) is True
        assert hours.is_open_at(datetime(2026, 6, 10, 23, 59, 30)) is True
        assert hours.is_open_at(datetime(2026, 6, 11, 12, 0)) is False

    def test_overnight_range_covers_next_morning(self) -> None:
        # Friday 18:00 until Saturday 02:00
        hours = _parse_opening_hours(
            {"timeRanges": [time_range("2026-06-12", 18, "2026-06-13", 2)]}
        )

        assert [day.day_of_week for day in hours.schedule] == [5, 6]
        assert hours.is_open_at(datetime(2026, 6, 12, 17, 0)) is False
        assert hours.is_open_at(datetime(2026, 6, 12, 22, 0)) is True
        assert hours.is_open_at(datetime(2026, 6, 13, 1, 0)) is True
        assert hours.is_open_at(datetime(2026, 6, 13, 3, 0)) is False

    def test_end_before_start_on_same_date_runs_overnight(self) -> None:
        hours = _parse_opening_hours(
            {"timeRanges": [time_range("2026-06-12", 20, "2026-06-12", 3)]}
        )

        assert hours.is_open_at(datetime(2026, 6, 13, 2, 0)) is True
        assert hours.is_open_at(datetime(2026, 6, 12, 10, 0)) is False

    def test_missing_ranges_means_no_data(self) -> None:
        assert _parse_opening_hours(None) is None
        assert _parse_opening_hours({"mode": "nextSevenDays", "timeRanges": []}) is None


def test_overnight_day_schedule_covers_following_day() -> None:
    """A hand-built window closing after midnight counts on the next weekday."""
    # Saturday 22:00 until 04:00
    hours = OpeningHours(
        schedule=[DaySchedule(day_of_week=6, open_time=time(22), close_time=time(4))]
    )

    assert hours.is_open_at(datetime(2026, 6, 13, 23, 0)) is True
    assert hours.is_open_at(datetime(2026, 6, 14, 3, 0)) is True
    # Early Saturday morning belongs to Friday's window, which does not exist
    assert hours.is_open_at(datetime(2026, 6, 13, 3, 0)) is False


@pytest.mark.asyncio
async def test_reverse_geocode_includes_country_code() -> None:
    provider, _ = make_provider(
        lambda request: httpx.Response(
            200,
            json={"addresses": [{"address": {"municipality": "Lyon", "countryCode": "FR"}}]},
        )
    )

    location = await provider.reverse_geocode(PARIS, "fr")

    assert location.country_code == "FR"


@pytest.mark.asyncio
async def test_search_locations_maps_pois_and_addresses() -> None:
    payload = {
        "results": [
            SEARCH_RESPONSE["results"][0],
            {
                "type": "Point Address",
                "address": {
                    "freeformAddress": "10 Downing Street, London",
                    "municipality": "London",
                    "countryCode": "GB",
                },
                "position": {"lat": 51.5034, "lon": -0.1276},
            },
            {"type": "Geography", "address": {"freeformAddress": "No position"}},
        ]
    }
    provider, requests = make_provider(lambda request: httpx.Response(200, json=payload))

    matches = await provider.search_locations("louvre", "en", 5, near=PARIS)

    assert [m.type for m in matches] == ["POI", "Address"]
    assert matches[0].name == "Musée du Louvre"
    assert matches[1].name == "10 Downing Street, London"
    assert matches[1].country_code == "GB"
    assert matches[1].position.lat == 51.5034

    params = requests[0].url.params
    assert requests[0].url.path == "/search/fuzzy/json"
    assert params["query"] == "louvre"
    assert params["limit"] == "5"
    assert params["lat"] == "48.8566"


@pytest.mark.asyncio
async def test_search_locations_without_bias() -> None:
    provider, requests = make_provider(lambda request: httpx.Response(200, json={"results": []}))

    assert await provider.search_locations("rome", "it", 10) == []
    assert "lat" not in requests[0].url.params
