"""Pure geometry helpers used by the itinerary planner.

No external calls. Coordinates are WGS84 degrees.
"""

import math
from collections.abc import Sequence

from journey_planner.app.models.common import LocationPoint
from journey_planner.app.models.provider import RouteResult

EARTH_RADIUS_METERS = 6_371_000.0

# ~11 m at the equator, in both axes
DEGENERATE_ROUTE_TOLERANCE_DEG = 0.0001


def haversine_meters(a: LocationPoint, b: LocationPoint) -> float:
    """Great-circle distance between two points in meters."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(min(1.0, h)))


def midpoint(a: LocationPoint, b: LocationPoint) -> LocationPoint:
    """Arithmetic midpoint of two points.

    Used as the reachability center. This is not the geodesic midpoint and
    is only meaningful for points that are close together.
    """
    return LocationPoint(lat=(a.lat + b.lat) / 2, lon=(a.lon + b.lon) / 2)


def point_in_polygon(point: LocationPoint, polygon: Sequence[LocationPoint]) -> bool:
    """Ray-casting containment test against an ordered polygon ring.

    Latitude is treated as x and longitude as y. The ring may be open or
    closed (first point repeated at the end). Fewer than three vertices never
    contain anything.
    """
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].lat, polygon[i].lon
        xj, yj = polygon[j].lat, polygon[j].lon

        if (yi > point.lon) != (yj > point.lon):
            x_cross = (xj - xi) * (point.lon - yi) / (yj - yi) + xi
            if point.lat < x_cross:
                inside = not inside
        j = i

    return inside


def is_degenerate_route(a: LocationPoint, b: LocationPoint) -> bool:
    """True when both axes differ by less than the degenerate tolerance."""
    return (
        abs(a.lat - b.lat) < DEGENERATE_ROUTE_TOLERANCE_DEG
        and abs(a.lon - b.lon) < DEGENERATE_ROUTE_TOLERANCE_DEG
    )


def zero_route(a: LocationPoint, b: LocationPoint) -> RouteResult:
    """Zero-distance, zero-time route used for degenerate legs."""
    return RouteResult(distance_meters=0, travel_time_minutes=0, points=[a, b])


def fallback_radius_km(avg_speed_kmh: float, explore_minutes: int) -> float:
    """Search radius when no isochrone is available: speed x time, at least 1 km."""
    return max((avg_speed_kmh * explore_minutes) / 60.0, 1.0)
