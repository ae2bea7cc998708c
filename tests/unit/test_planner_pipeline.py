"""Unit tests for the itinerary planner pipeline.

The maps provider is an in-process fake; the advisor is the heuristic one
unless a test says otherwise. No network calls.
"""

import asyncio
from datetime import UTC, datetime, time

import httpx
import pytest

from journey_planner.app.advisor.client import AdvisorError, HeuristicPlanningAdvisor
from journey_planner.app.config import Settings
from journey_planner.app.models.common import FailureReason, LocationPoint, TravelMode
from journey_planner.app.models.provider import (
    DaySchedule,
    IsochroneResult,
    OpeningHours,
    PoiCategory,
    PointOfInterest,
    ReverseGeocodeResult,
    RouteResult,
)
from journey_planner.app.models.request import ItineraryRequest
from journey_planner.app.planning.errors import PlanningError
from journey_planner.app.planning.pipeline import ItineraryPlanner
from journey_planner.app.tools.executor import (
    CancelToken,
    ToolCancelledError,
    ToolConfig,
    ToolExecutor,
)

START = LocationPoint(lat=48.850, lon=2.340)
END = LocationPoint(lat=48.860, lon=2.350)

# Wednesday 10:00 UTC
NOW = datetime(2026, 6, 10, 10, 0, tzinfo=UTC)

TAXONOMY = [
    PoiCategory(id="7317", name="museum"),
    PoiCategory(id="7315", name="restaurant"),
    PoiCategory(id="9362", name="park"),
]

SQUARE = [
    LocationPoint(lat=48.80, lon=2.30),
    LocationPoint(lat=48.80, lon=2.40),
    LocationPoint(lat=48.90, lon=2.40),
    LocationPoint(lat=48.90, lon=2.30),
]


def make_poi(
    poi_id: str,
    category: str,
    lat: float = 48.855,
    lon: float = 2.345,
    opening_hours: OpeningHours | None = None,
) -> PointOfInterest:
    return PointOfInterest(
        id=poi_id,
        name=f"{category.title()} {poi_id}",
        address=f"{poi_id} Rue de Test",
        lat=lat,
        lon=lon,
        category=category,
        opening_hours=opening_hours,
    )


def museums() -> list[PointOfInterest]:
    return [
        make_poi("m1", "museum", 48.852, 2.342),
        make_poi("m2", "museum", 48.854, 2.344),
        make_poi("m3", "museum", 48.856, 2.346),
    ]


def restaurants() -> list[PointOfInterest]:
    return [
        make_poi("r1", "restaurant", 48.857, 2.347),
        make_poi("r2", "restaurant", 48.858, 2.348),
    ]


class FakeMapsProvider:
    """Deterministic maps provider recording every call."""

    def __init__(
        self,
        *,
        by_category: dict[str, list[PointOfInterest]] | None = None,
        fuzzy_by_term: dict[str, list[PointOfInterest]] | None = None,
        taxonomy: list[PoiCategory] | None = None,
        base_minutes: int = 10,
        leg_minutes: int = 10,
        time_zone: str = "UTC",
        transit_available: bool = True,
        isochrone_boundary: list[LocationPoint] | None = None,
        failing_points: set[LocationPoint] | None = None,
    ) -> None:
        self.by_category = by_category or {}
        self.fuzzy_by_term = fuzzy_by_term or {}
        self.taxonomy = TAXONOMY if taxonomy is None else taxonomy
        self.base_minutes = base_minutes
        self.leg_minutes = leg_minutes
        self.time_zone = time_zone
        self.transit_available = transit_available
        self.isochrone_boundary = isochrone_boundary
        self.failing_points = failing_points or set()

        self.route_calls = 0
        self.category_searches: list[tuple[list[str], float]] = []
        self.fuzzy_searches: list[tuple[list[str], int]] = []
        self.isochrone_calls: list[tuple[TravelMode, int]] = []

    async def get_time_zone(self, point: LocationPoint) -> str:
        return self.time_zone

    async def get_route(
        self, origin: LocationPoint, destination: LocationPoint, mode: TravelMode
    ) -> RouteResult:
        self.route_calls += 1
        if origin in self.failing_points or destination in self.failing_points:
            raise httpx.ConnectError("route service unreachable")
        if {origin, destination} == {START, END}:
            minutes = self.base_minutes
        else:
            minutes = self.leg_minutes
        return RouteResult(distance_meters=minutes * 80, travel_time_minutes=minutes)

    async def is_transit_available(self, point: LocationPoint) -> bool:
        return self.transit_available

    async def get_isochrone(
        self, center: LocationPoint, mode: TravelMode, minutes: int
    ) -> IsochroneResult | None:
        self.isochrone_calls.append((mode, minutes))
        if self.isochrone_boundary is None:
            return None
        return IsochroneResult(
            boundary=self.isochrone_boundary, center=center, mode=mode, time_minutes=minutes
        )

    async def get_poi_category_tree(self, language: str) -> list[PoiCategory]:
        return self.taxonomy

    async def search_pois_by_category(
        self, center: LocationPoint, category_ids: list[str], radius_km: float, limit: int
    ) -> list[PointOfInterest]:
        self.category_searches.append((category_ids, radius_km))
        found: list[PointOfInterest] = []
        for category_id in category_ids:
            found.extend(poi.model_copy() for poi in self.by_category.get(category_id, []))
        return found[:limit]

    async def search_pois_fuzzy(
        self, center: LocationPoint, terms: list[str], radius_km: float, limit: int
    ) -> list[PointOfInterest]:
        self.fuzzy_searches.append((list(terms), limit))
        found: list[PointOfInterest] = []
        for term in terms:
            found.extend(poi.model_copy() for poi in self.fuzzy_by_term.get(term, []))
        return found[:limit]

    async def reverse_geocode(self, point: LocationPoint, language: str) -> ReverseGeocodeResult:
        return ReverseGeocodeResult(locality="Paris", formatted_address="Paris, France")


class FailingAdvisor:
    """Advisor whose every call fails."""

    async def map_interests_to_categories(self, *args, **kwargs):
        raise AdvisorError("model unavailable")

    async def estimate_dwell_minutes(self, *args, **kwargs):
        raise AdvisorError("model unavailable")

    async def rank_pois(self, *args, **kwargs):
        raise AdvisorError("model unavailable")

    async def generate_descriptions(self, *args, **kwargs):
        raise AdvisorError("model unavailable")


class StaticRankAdvisor(HeuristicPlanningAdvisor):
    """Heuristic advisor with a fixed ranking."""

    def __init__(self, ranking: list[str]) -> None:
        self.ranking = ranking

    async def rank_pois(self, *args, **kwargs) -> list[str]:
        return list(self.ranking)


class SlowRankAdvisor(StaticRankAdvisor):
    """Fixed ranking that takes a while to answer."""

    def __init__(self, ranking: list[str], delay_seconds: float) -> None:
        super().__init__(ranking)
        self.delay_seconds = delay_seconds

    async def rank_pois(self, *args, **kwargs) -> list[str]:
        await asyncio.sleep(self.delay_seconds)
        return list(self.ranking)


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def make_executor() -> ToolExecutor:
    async def no_sleep(seconds: float) -> None:
        return None

    return ToolExecutor(
        ToolConfig(
            hard_timeout_ms=1000,
            retry_count=0,
            retry_jitter_min_ms=0,
            retry_jitter_max_ms=0,
            breaker_failure_threshold=1000,
        ),
        sleep_fn=no_sleep,
    )


def make_planner(maps: FakeMapsProvider, advisor=None, **settings) -> ItineraryPlanner:
    return ItineraryPlanner(
        maps,
        advisor or HeuristicPlanningAdvisor(),
        make_executor(),
        make_settings(**settings),
        now_fn=lambda: NOW,
    )


def make_request(
    budget: int = 300,
    interests: str = "museums, food",
    mode: TravelMode = TravelMode.walking,
) -> ItineraryRequest:
    return ItineraryRequest(
        start=START,
        end=END,
        mode=mode,
        max_duration_minutes=budget,
        interests=interests,
        language="en",
    )


async def plan_failure(planner: ItineraryPlanner, request: ItineraryRequest) -> FailureReason:
    with pytest.raises(PlanningError) as exc_info:
        await planner.plan(request, job_id="job-1")
    return exc_info.value.reason


async def planner_result(maps: FakeMapsProvider, request: ItineraryRequest):
    return await make_planner(maps).plan(request, job_id="job-1")


class TestFeasibilityGate:
    """Commute check before any search."""

    @pytest.mark.asyncio
    async def test_commute_exceeds_budget_without_searching(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()}, base_minutes=100)
        planner = make_planner(maps)

        reason = await plan_failure(planner, make_request(budget=180))

        assert reason is FailureReason.commute_exceeds_budget
        assert maps.category_searches == []
        assert maps.fuzzy_searches == []
        assert maps.isochrone_calls == []

    @pytest.mark.asyncio
    async def test_base_route_failure_is_routing_failed(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()}, failing_points={START})
        planner = make_planner(maps)

        assert await plan_failure(planner, make_request()) is FailureReason.routing_failed

    @pytest.mark.asyncio
    async def test_round_trip_equal_to_budget_passes_gate(self) -> None:
        """2 x base == budget passes the gate; nothing then fits."""
        maps = FakeMapsProvider(by_category={"7317": museums()}, base_minutes=60)
        planner = make_planner(maps)

        reason = await plan_failure(planner, make_request(budget=120))

        assert reason is FailureReason.no_feasible_stops


class TestHappyPath:
    """Full pipeline with every stage succeeding."""

    @pytest.mark.asyncio
    async def test_itinerary_within_budget(self) -> None:
        maps = FakeMapsProvider(
            by_category={"7317": museums(), "7315": restaurants()},
            time_zone="Europe/Paris",
        )
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=300), job_id="job-1")

        # m1: 20 -> 150, m2: 280, then nothing fits; slack 20 -> +10 per stop
        assert [stop.id for stop in result.stops] == ["m1", "m2"]
        assert len(result.legs) == len(result.stops) + 1
        assert result.stops[0].visit_minutes == 130
        assert result.legs[0].from_name == "Start"
        assert result.legs[-1].to_name == "End"
        assert result.legs[-1].arrive_from_journey_start == 290

        summary = result.summary
        assert summary.stops_count == 2
        assert summary.total_travel_minutes + summary.total_visit_minutes <= 300
        assert summary.time_budget_minutes == 300
        assert summary.mode is TravelMode.walking

    @pytest.mark.asyncio
    async def test_no_duplicate_stops(self) -> None:
        """The same POI returned by two category searches is kept once."""
        shared = make_poi("shared", "museum", 48.853, 2.343)
        maps = FakeMapsProvider(
            by_category={"7317": [shared], "9362": [shared], "7315": restaurants()},
        )
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=600), job_id="job-1")

        ids = [stop.id for stop in result.stops]
        assert len(ids) == len(set(ids))
        assert ids.count("shared") == 1

    @pytest.mark.asyncio
    async def test_descriptions_default_to_name(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=200, interests="museums"))

        assert result.stops[0].description == "Museum m1"

    @pytest.mark.asyncio
    async def test_advisor_failures_fall_back_to_heuristics(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums(), "7315": restaurants()})
        planner = make_planner(maps, advisor=FailingAdvisor())

        result = await planner.plan(make_request(budget=300), job_id="job-1")

        assert result.summary.stops_count >= 1
        assert result.stops[0].id == "m1"

    @pytest.mark.asyncio
    async def test_balance_injects_food_into_museum_ranking(self) -> None:
        """Museum-only ranking with food requested gets a restaurant."""
        maps = FakeMapsProvider(
            by_category={"7317": museums(), "7315": restaurants()},
            leg_minutes=5,
            base_minutes=5,
        )
        advisor = StaticRankAdvisor(["m1", "m2", "m3"])
        planner = make_planner(maps, advisor=advisor, max_pois=3)

        result = await planner.plan(make_request(budget=600), job_id="job-1")

        categories = [stop.category for stop in result.stops]
        assert "restaurant" in categories
        assert len(result.stops) <= 3

    @pytest.mark.asyncio
    async def test_unknown_ranked_ids_fall_back_to_candidate_order(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = make_planner(maps, advisor=StaticRankAdvisor(["ghost-1", "ghost-2"]))

        result = await planner.plan(make_request(budget=200, interests="museums"))

        assert result.stops[0].id == "m1"

    @pytest.mark.asyncio
    async def test_route_cache_avoids_repeated_provider_calls(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=300, interests="museums"))

        # Base route, then two new legs per evaluated candidate; assembly is all cache hits
        assert result.summary.stops_count == 2
        assert maps.route_calls == 1 + 2 * 3


class TestReachability:
    """Isochrone, radius and transit probing."""

    @pytest.mark.asyncio
    async def test_fallback_radius_when_no_isochrone(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = make_planner(maps)

        await planner.plan(make_request(budget=180, interests="museums"))

        # explore = 180 - 2 x 10 = 160 min at 4.5 km/h
        radii = [radius for _, radius in maps.category_searches]
        assert len(radii) == 3
        assert all(radius == pytest.approx(12.0) for radius in radii)

    @pytest.mark.asyncio
    async def test_default_radius_with_isochrone(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()}, isochrone_boundary=SQUARE)
        planner = make_planner(maps)

        await planner.plan(make_request(budget=180, interests="museums"))

        assert maps.isochrone_calls == [(TravelMode.walking, 160)]
        assert {radius for _, radius in maps.category_searches} == {2.5}

    @pytest.mark.asyncio
    async def test_explore_minutes_floor(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()}, base_minutes=30)

        await plan_failure(make_planner(maps), make_request(budget=60, interests="museums"))

        assert maps.isochrone_calls == [(TravelMode.walking, 30)]

    @pytest.mark.asyncio
    async def test_isochrone_filters_outside_candidates(self) -> None:
        far = make_poi("far", "museum", 49.5, 3.0)
        maps = FakeMapsProvider(
            by_category={"7317": [far, *museums()]}, isochrone_boundary=SQUARE
        )
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=600, interests="museums"))

        assert "far" not in [stop.id for stop in result.stops]

    @pytest.mark.asyncio
    async def test_everything_outside_isochrone(self) -> None:
        far = make_poi("far", "museum", 49.5, 3.0)
        maps = FakeMapsProvider(by_category={"7317": [far]}, isochrone_boundary=SQUARE)

        reason = await plan_failure(make_planner(maps), make_request(interests="museums"))

        assert reason is FailureReason.no_pois_in_isochrone

    @pytest.mark.asyncio
    async def test_transit_unavailable_uses_walking_reachability(self) -> None:
        maps = FakeMapsProvider(
            by_category={"7317": museums()},
            transit_available=False,
            isochrone_boundary=SQUARE,
        )
        planner = make_planner(maps)

        result = await planner.plan(
            make_request(budget=240, interests="museums", mode=TravelMode.transit)
        )

        assert maps.isochrone_calls[0][0] is TravelMode.walking
        # Legs are still routed with the requested mode
        assert result.legs[0].mode is TravelMode.transit
        assert result.summary.mode is TravelMode.transit

    @pytest.mark.asyncio
    async def test_transit_fallback_disabled(self) -> None:
        maps = FakeMapsProvider(
            by_category={"7317": museums()},
            transit_available=False,
            isochrone_boundary=SQUARE,
        )
        planner = make_planner(maps, transit_walking_fallback=False)

        await planner.plan(make_request(budget=240, interests="museums", mode=TravelMode.transit))

        assert maps.isochrone_calls[0][0] is TravelMode.transit


class TestCandidateGathering:
    """Category search, fuzzy fallbacks and empty pools."""

    @pytest.mark.asyncio
    async def test_no_pois_anywhere(self) -> None:
        maps = FakeMapsProvider()

        reason = await plan_failure(make_planner(maps), make_request())

        assert reason is FailureReason.no_pois_in_isochrone
        # Final fuzzy fallback tried with the interest terms
        assert maps.fuzzy_searches[-1] == (["museums", "food"], 25)

    @pytest.mark.asyncio
    async def test_empty_taxonomy(self) -> None:
        maps = FakeMapsProvider(taxonomy=[], by_category={"7317": museums()})

        reason = await plan_failure(make_planner(maps), make_request())

        assert reason is FailureReason.no_pois_in_isochrone
        assert maps.category_searches == []

    @pytest.mark.asyncio
    async def test_empty_category_falls_back_to_category_name(self) -> None:
        maps = FakeMapsProvider(fuzzy_by_term={"museum": museums()})
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=300, interests="museums"))

        assert (["museum"], 10) in maps.fuzzy_searches
        assert result.stops[0].id == "m1"

    @pytest.mark.asyncio
    async def test_final_fuzzy_fallback_with_interest_terms(self) -> None:
        jazz = make_poi("jazz-club", "nightlife", 48.853, 2.343)
        maps = FakeMapsProvider(fuzzy_by_term={"jazz": [jazz]})
        planner = make_planner(maps)

        result = await planner.plan(make_request(budget=300, interests="jazz, vinyl, blues, soul"))

        assert maps.fuzzy_searches[-1] == (["jazz", "vinyl", "blues"], 25)
        assert [stop.id for stop in result.stops] == ["jazz-club"]


class TestOpeningHours:
    """Strict opening-hours filter."""

    @staticmethod
    def hours(day: int, opens: time, closes: time) -> OpeningHours:
        return OpeningHours(
            schedule=[DaySchedule(day_of_week=day, open_time=opens, close_time=closes)]
        )

    @pytest.mark.asyncio
    async def test_all_closed_is_no_open_pois(self) -> None:
        # Open Sundays only; the trip starts on a Wednesday
        sunday_only = self.hours(0, time(9), time(18))
        pois = [make_poi(f"m{i}", "museum", opening_hours=sunday_only) for i in range(3)]
        maps = FakeMapsProvider(by_category={"7317": pois})

        reason = await plan_failure(make_planner(maps), make_request(interests="museums"))

        assert reason is FailureReason.no_open_pois

    @pytest.mark.asyncio
    async def test_closing_before_departure_excludes(self) -> None:
        """Arrival at 10:30 is inside 10:00-11:00 but a 120 minute visit is not."""
        short = make_poi("short", "museum", 48.853, 2.343, self.hours(3, time(10), time(11)))
        all_day = make_poi("all-day", "museum", 48.854, 2.344, self.hours(3, time(8), time(20)))
        maps = FakeMapsProvider(by_category={"7317": [short, all_day]})

        result = await planner_result(maps, make_request(interests="museums"))

        assert [stop.id for stop in result.stops] == ["all-day"]

    @pytest.mark.asyncio
    async def test_local_time_zone_applied(self) -> None:
        """10:00 UTC is 19:00 in Tokyo, after closing."""
        wednesday = self.hours(3, time(9), time(18))
        pois = [make_poi("m1", "museum", opening_hours=wednesday)]
        maps = FakeMapsProvider(by_category={"7317": pois}, time_zone="Asia/Tokyo")

        reason = await plan_failure(make_planner(maps), make_request(interests="museums"))

        assert reason is FailureReason.no_open_pois

    @pytest.mark.asyncio
    async def test_unknown_time_zone_uses_utc(self) -> None:
        wednesday = self.hours(3, time(9), time(18))
        pois = [make_poi("m1", "museum", opening_hours=wednesday)]
        maps = FakeMapsProvider(by_category={"7317": pois}, time_zone="Mars/Olympus_Mons")

        result = await planner_result(maps, make_request(interests="museums"))

        assert result.stops[0].id == "m1"

    @pytest.mark.asyncio
    async def test_non_strict_mode_ignores_hours(self) -> None:
        sunday_only = self.hours(0, time(9), time(18))
        pois = [make_poi("m1", "museum", opening_hours=sunday_only)]
        maps = FakeMapsProvider(by_category={"7317": pois})
        planner = make_planner(maps, strict_opening_hours=False)

        result = await planner.plan(make_request(interests="museums"))

        assert result.stops[0].id == "m1"


class TestSelectionFailures:
    """Empty selections are classified."""

    @pytest.mark.asyncio
    async def test_nothing_fits_is_no_feasible_stops(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})

        reason = await plan_failure(make_planner(maps), make_request(budget=60, interests="museums"))

        assert reason is FailureReason.no_feasible_stops

    @pytest.mark.asyncio
    async def test_only_route_failures_is_routing_failed(self) -> None:
        pois = museums()
        maps = FakeMapsProvider(
            by_category={"7317": pois},
            failing_points={poi.location for poi in pois},
        )

        reason = await plan_failure(make_planner(maps), make_request(interests="museums"))

        assert reason is FailureReason.routing_failed


class TestCancellation:
    """Cancellation propagates as ToolCancelledError."""

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_planning(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = make_planner(maps)
        token = CancelToken()
        token.cancel()

        with pytest.raises(ToolCancelledError):
            await planner.plan(make_request(), job_id="job-1", cancel_token=token)

        assert maps.route_calls == 0



class TestAdvisorTimeout:
    """Advisor calls are bounded by the advisor timeout, not the tool timeout."""

    @staticmethod
    def planner_with_short_tool_timeout(
        maps: FakeMapsProvider, advisor, advisor_timeout_seconds: float
    ) -> ItineraryPlanner:
        executor = ToolExecutor(
            ToolConfig(
                hard_timeout_ms=20,
                retry_count=0,
                retry_jitter_min_ms=0,
                retry_jitter_max_ms=0,
                breaker_failure_threshold=1000,
            )
        )
        return ItineraryPlanner(
            maps,
            advisor,
            executor,
            make_settings(advisor_timeout_seconds=advisor_timeout_seconds),
            now_fn=lambda: NOW,
        )

    @pytest.mark.asyncio
    async def test_slow_advisor_within_advisor_timeout_is_used(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = self.planner_with_short_tool_timeout(
            maps, SlowRankAdvisor(["m3"], delay_seconds=0.1), advisor_timeout_seconds=2.0
        )

        result = await planner.plan(make_request(budget=200, interests="museums"))

        assert result.stops[0].id == "m3"

    @pytest.mark.asyncio
    async def test_advisor_past_advisor_timeout_falls_back(self) -> None:
        maps = FakeMapsProvider(by_category={"7317": museums()})
        planner = self.planner_with_short_tool_timeout(
            maps, SlowRankAdvisor(["m3"], delay_seconds=0.5), advisor_timeout_seconds=0.05
        )

        result = await planner.plan(make_request(budget=200, interests="museums"))

        assert result.stops[0].id == "m1"
