"""Itinerary planner: the staged pipeline from request to itinerary.

Stages run strictly in order for one job. Every provider and advisor call goes
through the ToolExecutor (timeout, retries, circuit breaker, cancellation).
Advisor calls are best-effort: any failure falls back to the heuristic advisor.
Domain failures surface as PlanningError carrying a FailureReason.
"""

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from journey_planner.app.advisor.client import (
    HeuristicPlanningAdvisor,
    PlanningAdvisor,
    clamp_minutes,
)
from journey_planner.app.config import Settings
from journey_planner.app.geo.geometry import fallback_radius_km, midpoint, point_in_polygon
from journey_planner.app.models.common import FailureReason, LocationPoint, TravelMode
from journey_planner.app.models.itinerary import ItineraryResult
from journey_planner.app.models.provider import (
    IsochroneResult,
    PoiCategory,
    PointOfInterest,
    RouteResult,
)
from journey_planner.app.models.request import ItineraryRequest
from journey_planner.app.planning.assembly import assemble_itinerary
from journey_planner.app.planning.balance import enforce_interest_balance, validate_interest_coverage
from journey_planner.app.planning.categories import category_name, validate_category_ids
from journey_planner.app.planning.errors import PlanningError
from journey_planner.app.planning.routes import RouteBook
from journey_planner.app.planning.selection import redistribute_slack, select_stops
from journey_planner.app.providers.maps import MapsProvider
from journey_planner.app.tools.executor import (
    TOOL_FAILURES,
    CancelToken,
    ToolConfig,
    ToolContext,
    ToolExecutor,
)
from journey_planner.app.utils.metrics import itinerary_planning_seconds

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN_CITY = "Unknown City"
MIN_EXPLORE_MINUTES = 30
ASSUMED_ARRIVAL_OFFSET = timedelta(minutes=30)
FINAL_FALLBACK_TERMS = 3


def utc_now() -> datetime:
    return datetime.now(UTC)


class ItineraryPlanner:
    """Plans one itinerary per call with injected provider, advisor and executor."""

    def __init__(
        self,
        maps: MapsProvider,
        advisor: PlanningAdvisor,
        executor: ToolExecutor,
        settings: Settings,
        fallback_advisor: PlanningAdvisor | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize planner.

        Args:
            maps: Map & routing provider
            advisor: Primary planning advisor
            executor: Executor wrapping every external call
            settings: Planning configuration
            fallback_advisor: Advisor used when the primary fails (default: heuristic)
            now_fn: Injectable clock returning an aware UTC datetime
        """
        self._maps = maps
        self._advisor = advisor
        self._fallback = fallback_advisor or HeuristicPlanningAdvisor()
        self._executor = executor
        self._settings = settings
        self._now = now_fn or utc_now

    async def plan(
        self,
        request: ItineraryRequest,
        *,
        job_id: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> ItineraryResult:
        """Run every planning stage for a request.

        Raises:
            PlanningError: Classified domain failure
            ToolCancelledError: Cancellation was requested
        """
        run = _PlanRun(self, request, job_id, cancel_token or CancelToken())
        with itinerary_planning_seconds.time():
            return await run.execute()


class _PlanRun:
    """State for one planning run (route cache, trace ids, cancellation)."""

    def __init__(
        self,
        planner: ItineraryPlanner,
        request: ItineraryRequest,
        job_id: str | None,
        cancel_token: CancelToken,
    ) -> None:
        self.planner = planner
        self.settings = planner._settings
        self.request = request
        self.job_id = job_id
        self.trace_id = job_id or "adhoc"
        self.cancel_token = cancel_token
        self.routes = RouteBook(self._fetch_route)
        self.interests = request.interest_terms
        self.advisor_config = dataclasses.replace(
            planner._executor.config,
            hard_timeout_ms=int(self.settings.advisor_timeout_seconds * 1000),
        )

    # -- external call plumbing -------------------------------------------------

    async def _call(
        self,
        tool_name: str,
        fn: Callable[[], Awaitable[T]],
        config: ToolConfig | None = None,
    ) -> T:
        ctx = ToolContext(trace_id=self.trace_id, job_id=self.job_id, tool_name=tool_name)
        return await self.planner._executor.execute(ctx, fn, self.cancel_token, config=config)

    async def _fetch_route(
        self, origin: LocationPoint, destination: LocationPoint, mode: TravelMode
    ) -> RouteResult:
        return await self._call(
            "maps.route", lambda: self.planner._maps.get_route(origin, destination, mode)
        )

    async def _advise(
        self,
        name: str,
        primary: Callable[[PlanningAdvisor], Awaitable[T]],
    ) -> T:
        """Run an advisor call, falling back to the heuristic advisor on failure."""
        try:
            return await self._call(
                f"advisor.{name}",
                lambda: primary(self.planner._advisor),
                config=self.advisor_config,
            )
        except TOOL_FAILURES as e:
            logger.warning(
                "Advisor %s failed, using heuristic fallback",
                name,
                extra={"structured": {"job_id": self.job_id, "error": type(e).__name__}},
            )
            return await primary(self.planner._fallback)

    def _log(self, message: str, **fields: object) -> None:
        logger.info(message, extra={"structured": {"job_id": self.job_id, **fields}})

    # -- pipeline -----------------------------------------------------------------

    async def execute(self) -> ItineraryResult:
        request = self.request
        settings = self.settings
        budget = request.max_duration_minutes

        # 1. Localize time
        local_start = await self._local_start_time()

        # 2. Feasibility gate
        self.cancel_token.throw_if_cancelled()
        try:
            base_route = await self.routes.get(request.start, request.end, request.mode)
        except TOOL_FAILURES as e:
            raise PlanningError(
                FailureReason.routing_failed, "Failed to calculate the base route"
            ) from e

        base_minutes = base_route.travel_time_minutes
        if 2 * base_minutes > budget:
            raise PlanningError(
                FailureReason.commute_exceeds_budget,
                f"Round trip of {2 * base_minutes} minutes exceeds the "
                f"{budget} minute budget",
            )

        # 3. Transit availability
        reach_mode = await self._reachability_mode()

        # 4. Reachability center & exploration budget
        center = midpoint(request.start, request.end)
        explore_minutes = max(MIN_EXPLORE_MINUTES, budget - 2 * base_minutes)

        # 5. Reachability boundary
        isochrone = await self._isochrone(center, reach_mode, explore_minutes)
        if isochrone is not None:
            radius_km = settings.default_radius_km.get(reach_mode.value, 2.5)
        else:
            radius_km = fallback_radius_km(
                settings.avg_speeds_kmh.get(reach_mode.value, 4.5), explore_minutes
            )
        self._log(
            "Reachability resolved",
            mode=reach_mode.value,
            explore_minutes=explore_minutes,
            radius_km=round(radius_km, 2),
            isochrone=isochrone is not None,
        )

        # 6. Category mapping
        city = await self._city_name()
        taxonomy = await self._category_tree()
        category_ids = await self._map_categories(city, taxonomy)
        if not category_ids:
            raise PlanningError(
                FailureReason.no_pois_in_isochrone,
                "No matching POI categories found for interests",
            )

        # 7. Candidate gathering
        candidates = await self._gather_candidates(center, radius_km, category_ids, taxonomy)
        if not candidates:
            raise PlanningError(FailureReason.no_pois_in_isochrone)

        # 8. Geometric filter
        if isochrone is not None:
            candidates = [c for c in candidates if point_in_polygon(c.location, isochrone.boundary)]
            self._log("Isochrone filter applied", remaining=len(candidates))
            if not candidates:
                raise PlanningError(FailureReason.no_pois_in_isochrone)

        # 9. Dwell-time estimation
        await self._estimate_dwell(candidates)

        # 10. Opening-hours filter
        if settings.strict_opening_hours:
            candidates = self._filter_open(candidates, local_start)
            if not candidates:
                raise PlanningError(FailureReason.no_open_pois)

        # 11. Ranking
        ranked_ids = await self._rank(candidates, budget)

        # 12. Interest balance enforcement
        ranked_ids = enforce_interest_balance(
            candidates, ranked_ids, self.interests, settings.max_pois
        )
        by_id = {poi.id: poi for poi in candidates}
        ranked = [by_id[poi_id] for poi_id in ranked_ids if poi_id in by_id]

        # 13. Greedy budget-constrained selection
        self.cancel_token.throw_if_cancelled()
        outcome = await select_stops(
            ranked,
            start=request.start,
            end=request.end,
            mode=request.mode,
            budget_minutes=budget,
            base_travel_minutes=base_minutes,
            max_pois=settings.max_pois,
            route=self.routes.get,
        )
        if not outcome.stops:
            if outcome.rejected_route_failure and not outcome.rejected_over_budget:
                raise PlanningError(
                    FailureReason.routing_failed,
                    "Could not route to any candidate stop",
                )
            raise PlanningError(FailureReason.no_feasible_stops)
        stops = outcome.stops

        # 14. Slack redistribution
        extra = redistribute_slack(stops, budget, outcome.total_minutes)
        self._log(
            "Stops selected",
            stops=len(stops),
            total_minutes=outcome.total_minutes,
            slack_per_stop=extra,
        )

        # 15. Coverage validation
        validate_interest_coverage(stops, self.interests)

        # 16. Description generation
        descriptions = await self._advise(
            "descriptions",
            lambda a: a.generate_descriptions(stops, request.language, city),
        )

        # 17. Assembly
        self.cancel_token.throw_if_cancelled()
        result = await assemble_itinerary(
            stops,
            start=request.start,
            end=request.end,
            mode=request.mode,
            language=request.language,
            budget_minutes=budget,
            descriptions=descriptions,
            route=self.routes.get,
        )
        self._log(
            "Itinerary assembled",
            stops=result.summary.stops_count,
            route_provider_calls=self.routes.provider_calls,
        )
        return result

    # -- stages -------------------------------------------------------------------

    async def _local_start_time(self) -> datetime:
        now = self.planner._now()
        try:
            tz_name = await self._call(
                "maps.time_zone", lambda: self.planner._maps.get_time_zone(self.request.start)
            )
            tz = ZoneInfo(tz_name)
        except (*TOOL_FAILURES, ZoneInfoNotFoundError, ValueError) as e:
            logger.warning("Time zone lookup failed (%s), using UTC", type(e).__name__)
            tz = ZoneInfo("UTC")
        return now.astimezone(tz)

    async def _reachability_mode(self) -> TravelMode:
        mode = self.request.mode
        if mode is not TravelMode.transit:
            return mode

        try:
            available = await self._call(
                "maps.transit_check",
                lambda: self.planner._maps.is_transit_available(self.request.start),
            )
        except TOOL_FAILURES as e:
            logger.warning("Transit check failed (%s), assuming transit", type(e).__name__)
            return mode

        if available:
            return mode
        if self.settings.transit_walking_fallback:
            self._log("Transit unavailable near start, using walking reachability")
            return TravelMode.walking
        logger.warning("Transit unavailable near start, walking fallback disabled")
        return mode

    async def _isochrone(
        self, center: LocationPoint, mode: TravelMode, minutes: int
    ) -> IsochroneResult | None:
        if not self.settings.use_isochrone_if_available:
            return None
        try:
            return await self._call(
                "maps.isochrone",
                lambda: self.planner._maps.get_isochrone(center, mode, minutes),
            )
        except TOOL_FAILURES as e:
            logger.warning("Isochrone unavailable (%s), using radius fallback", type(e).__name__)
            return None

    async def _city_name(self) -> str:
        try:
            location = await self._call(
                "maps.reverse_geocode",
                lambda: self.planner._maps.reverse_geocode(
                    self.request.start, self.request.language
                ),
            )
        except TOOL_FAILURES as e:
            logger.warning("Reverse geocode failed (%s)", type(e).__name__)
            return UNKNOWN_CITY
        return location.locality or location.formatted_address or UNKNOWN_CITY

    async def _category_tree(self) -> list[PoiCategory]:
        try:
            return await self._call(
                "maps.category_tree",
                lambda: self.planner._maps.get_poi_category_tree(self.request.language),
            )
        except TOOL_FAILURES as e:
            logger.warning("Category tree unavailable (%s)", type(e).__name__)
            return []

    async def _map_categories(self, city: str, taxonomy: list[PoiCategory]) -> list[str]:
        request = self.request
        mapped = await self._advise(
            "map_categories",
            lambda a: a.map_interests_to_categories(
                request.interests, request.language, city, taxonomy
            ),
        )
        valid = validate_category_ids(mapped, taxonomy)
        if not valid and mapped:
            logger.warning("Advisor returned only unknown category ids: %s", mapped)
        self._log("Categories mapped", categories=valid)
        return valid

    async def _gather_candidates(
        self,
        center: LocationPoint,
        radius_km: float,
        category_ids: list[str],
        taxonomy: list[PoiCategory],
    ) -> list[PointOfInterest]:
        maps = self.planner._maps
        per_category = self.settings.max_pois_per_category
        merged: dict[str, PointOfInterest] = {}

        for category_id in category_ids:
            self.cancel_token.throw_if_cancelled()
            try:
                found = await self._call(
                    "maps.search_category",
                    lambda cid=category_id: maps.search_pois_by_category(
                        center, [cid], radius_km, per_category
                    ),
                )
            except TOOL_FAILURES as e:
                logger.warning(
                    "Category %s search failed (%s), continuing", category_id, type(e).__name__
                )
                continue

            if not found:
                name = category_name(category_id, taxonomy)
                if name:
                    try:
                        found = await self._call(
                            "maps.search_fuzzy",
                            lambda term=name: maps.search_pois_fuzzy(
                                center, [term], radius_km, per_category
                            ),
                        )
                    except TOOL_FAILURES as e:
                        logger.warning(
                            "Fuzzy fallback for %s failed (%s)", name, type(e).__name__
                        )
                        found = []

            for poi in found:
                merged.setdefault(poi.id, poi)

        if not merged:
            terms = self.interests[:FINAL_FALLBACK_TERMS]
            if terms:
                logger.warning("All category searches empty, final fuzzy search with %s", terms)
                try:
                    found = await self._call(
                        "maps.search_fuzzy",
                        lambda: maps.search_pois_fuzzy(
                            center, terms, radius_km, self.settings.final_fallback_limit
                        ),
                    )
                except TOOL_FAILURES as e:
                    logger.error("Final fuzzy fallback failed (%s)", type(e).__name__)
                    found = []
                for poi in found:
                    merged.setdefault(poi.id, poi)

        self._log("Candidates gathered", count=len(merged))
        return list(merged.values())

    async def _estimate_dwell(self, candidates: list[PointOfInterest]) -> None:
        settings = self.settings
        floor = settings.dwell_floor_minutes
        ceiling = settings.dwell_ceiling_minutes

        for poi in candidates:
            minutes = await self._advise(
                "estimate_dwell",
                lambda a, p=poi: a.estimate_dwell_minutes(
                    p, self.request.language, settings.dwell_defaults, floor, ceiling
                ),
            )
            poi.estimated_min_visit_minutes = clamp_minutes(minutes, floor, ceiling)

    def _filter_open(
        self, candidates: list[PointOfInterest], local_start: datetime
    ) -> list[PointOfInterest]:
        arrival = local_start + ASSUMED_ARRIVAL_OFFSET
        open_pois = [
            poi
            for poi in candidates
            if poi.is_open_at(arrival)
            and poi.is_open_at(arrival + timedelta(minutes=poi.estimated_min_visit_minutes))
        ]
        self._log(
            "Opening-hours filter applied",
            before=len(candidates),
            after=len(open_pois),
        )
        return open_pois

    async def _rank(self, candidates: list[PointOfInterest], budget: int) -> list[str]:
        request = self.request
        max_pois = self.settings.max_pois

        ranked = await self._advise(
            "rank",
            lambda a: a.rank_pois(
                candidates, self.interests, request.language, request.mode, max_pois, budget
            ),
        )

        known = {poi.id for poi in candidates}
        ranked_ids: list[str] = []
        for poi_id in ranked:
            if poi_id in known and poi_id not in ranked_ids:
                ranked_ids.append(poi_id)

        if not ranked_ids:
            logger.warning("Ranking matched no candidates, using arrival order")
            ranked_ids = await self.planner._fallback.rank_pois(
                candidates, self.interests, request.language, request.mode, max_pois, budget
            )
        return ranked_ids
