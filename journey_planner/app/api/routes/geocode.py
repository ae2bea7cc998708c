"""Geocoding endpoints - GET /api/geocode/reverse and GET /api/geocode/search."""

import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from journey_planner.app.api.deps import enforce_rate_limit, get_maps_provider
from journey_planner.app.models.common import LocationPoint
from journey_planner.app.models.provider import GeocodeMatch
from journey_planner.app.providers.maps import MapsProvider, MapsProviderError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/geocode",
    tags=["geocode"],
    dependencies=[Depends(enforce_rate_limit)],
)

DEFAULT_LANGUAGE = "en"
MIN_QUERY_LENGTH = 2

# Cache-Control max-age per endpoint, seconds
REVERSE_CACHE_SECONDS = 300
SEARCH_CACHE_SECONDS = 60


class GeocodePosition(BaseModel):
    latitude: float
    longitude: float

    @classmethod
    def from_point(cls, point: LocationPoint) -> "GeocodePosition":
        return cls(latitude=point.lat, longitude=point.lon)


class ReverseGeocodeResponse(BaseModel):
    """Response for GET /api/geocode/reverse."""

    model_config = ConfigDict(populate_by_name=True)

    formatted_address: str = Field("", alias="formattedAddress")
    locality: str = ""
    country_code: str = Field("", alias="countryCode")
    center: GeocodePosition


class GeocodeSearchResult(BaseModel):
    """One entry of GET /api/geocode/search."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    name: str
    formatted_address: str = Field("", alias="formattedAddress")
    locality: str = ""
    country_code: str = Field("", alias="countryCode")
    position: GeocodePosition

    @classmethod
    def from_match(cls, match: GeocodeMatch) -> "GeocodeSearchResult":
        return cls(
            id=match.id,
            type=match.type,
            name=match.name,
            formatted_address=match.formatted_address,
            locality=match.locality,
            country_code=match.country_code,
            position=GeocodePosition.from_point(match.position),
        )


def resolve_language(lang: str | None, accept_language: str | None) -> str:
    """Explicit lang wins, then the first Accept-Language tag, then English."""
    if lang and lang.strip():
        return lang.strip()

    if accept_language:
        # "fr-CH, fr;q=0.9" -> "fr"
        tag = accept_language.split(",")[0].split(";")[0].strip()
        primary = tag.split("-")[0].lower()
        if len(primary) == 2 and primary.isalpha():
            return primary

    return DEFAULT_LANGUAGE


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _provider_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Geocoding provider is unavailable",
    )


@router.get(
    "/reverse",
    response_model=ReverseGeocodeResponse,
    response_model_by_alias=True,
)
async def reverse_geocode(
    response: Response,
    maps: Annotated[MapsProvider, Depends(get_maps_provider)],
    latitude: Annotated[float, Query(ge=-90, le=90)],
    longitude: Annotated[float, Query(ge=-180, le=180)],
    lang: str | None = None,
    accept_language: Annotated[str | None, Header()] = None,
) -> ReverseGeocodeResponse:
    """Address and locality for a coordinate.

    Raises:
        HTTPException: 502 if the maps provider fails
    """
    language = resolve_language(lang, accept_language)
    point = LocationPoint(lat=latitude, lon=longitude)
    logger.info(
        "Reverse geocoding request",
        extra={"structured": {"lat": latitude, "lon": longitude, "language": language}},
    )

    try:
        result = await maps.reverse_geocode(point, language)
    except (httpx.HTTPError, MapsProviderError) as e:
        logger.error(
            "Reverse geocoding failed",
            extra={"structured": {"lat": latitude, "lon": longitude, "error": type(e).__name__}},
        )
        raise _provider_unavailable() from e

    response.headers["Cache-Control"] = f"public, max-age={REVERSE_CACHE_SECONDS}"
    return ReverseGeocodeResponse(
        formatted_address=result.formatted_address or "",
        locality=result.locality or "",
        country_code=result.country_code or "",
        center=GeocodePosition.from_point(point),
    )


@router.get(
    "/search",
    response_model=list[GeocodeSearchResult],
    response_model_by_alias=True,
)
async def search_locations(
    response: Response,
    maps: Annotated[MapsProvider, Depends(get_maps_provider)],
    query: str,
    lang: str | None = None,
    latitude: Annotated[float | None, Query(ge=-90, le=90)] = None,
    longitude: Annotated[float | None, Query(ge=-180, le=180)] = None,
    limit: Annotated[int, Query(ge=1, le=20)] = 10,
    accept_language: Annotated[str | None, Header()] = None,
) -> list[GeocodeSearchResult]:
    """Places and addresses matching a free-text query.

    A latitude/longitude pair biases results toward the caller.

    Raises:
        HTTPException: 400 on an unusable query or half a location, 502 if the provider fails
    """
    query = query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        raise _bad_request(f"query must be at least {MIN_QUERY_LENGTH} characters long")

    if (latitude is None) != (longitude is None):
        raise _bad_request("latitude and longitude must be provided together")

    near = None
    if latitude is not None and longitude is not None:
        near = LocationPoint(lat=latitude, lon=longitude)

    language = resolve_language(lang, accept_language)
    logger.info(
        "Geocoding search request",
        extra={"structured": {"query": query, "language": language, "limit": limit}},
    )

    try:
        matches = await maps.search_locations(query, language, limit, near=near)
    except (httpx.HTTPError, MapsProviderError) as e:
        logger.error(
            "Geocoding search failed",
            extra={"structured": {"query": query, "error": type(e).__name__}},
        )
        raise _provider_unavailable() from e

    response.headers["Cache-Control"] = f"public, max-age={SEARCH_CACHE_SECONDS}"
    return [GeocodeSearchResult.from_match(match) for match in matches]
