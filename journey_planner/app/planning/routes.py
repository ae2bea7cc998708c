"""Per-job route lookup with caching and the degenerate-leg short-circuit."""

import logging
from collections.abc import Awaitable, Callable

from journey_planner.app.geo.geometry import is_degenerate_route, zero_route
from journey_planner.app.models.common import LocationPoint, TravelMode
from journey_planner.app.models.provider import RouteResult
from journey_planner.app.utils.metrics import route_cache_hits_total

logger = logging.getLogger(__name__)

RouteKey = tuple[float, float, float, float, TravelMode]
RouteFetcher = Callable[[LocationPoint, LocationPoint, TravelMode], Awaitable[RouteResult]]


class RouteBook:
    """Route cache scoped to a single planning run.

    Keyed by (from, to, mode). Degenerate legs (start and end within the
    tolerance on both axes) resolve to a zero route without touching the
    cache or the fetcher. Failed lookups are not cached.
    """

    def __init__(self, fetch: RouteFetcher) -> None:
        self._fetch = fetch
        self._routes: dict[RouteKey, RouteResult] = {}
        self.provider_calls = 0

    async def get(
        self, origin: LocationPoint, destination: LocationPoint, mode: TravelMode
    ) -> RouteResult:
        if is_degenerate_route(origin, destination):
            return zero_route(origin, destination)

        key = (origin.lat, origin.lon, destination.lat, destination.lon, mode)
        cached = self._routes.get(key)
        if cached is not None:
            route_cache_hits_total.inc()
            return cached

        self.provider_calls += 1
        route = await self._fetch(origin, destination, mode)
        self._routes[key] = route
        return route

    def __len__(self) -> int:
        return len(self._routes)
