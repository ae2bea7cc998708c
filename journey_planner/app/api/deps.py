"""FastAPI dependencies for the job store, queue, maps provider and rate limiter.

Backends are created once in the application lifespan and kept on app.state;
tests override these dependencies with in-memory implementations.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from journey_planner.app.db.repositories import JobRepository
from journey_planner.app.middleware.ratelimit import RATE_LIMIT_MESSAGE, RateLimitMiddleware
from journey_planner.app.providers.maps import MapsProvider
from journey_planner.app.queue.base import JobQueue
from journey_planner.app.utils.metrics import rate_limited_total

logger = logging.getLogger(__name__)


def get_job_repository(request: Request) -> JobRepository:
    return request.app.state.job_repository


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_maps_provider(request: Request) -> MapsProvider:
    provider = request.app.state.maps_provider
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Geocoding is not configured",
        )
    return provider


def get_rate_limiter(request: Request) -> RateLimitMiddleware:
    return request.app.state.rate_limiter


async def enforce_rate_limit(
    request: Request,
    limiter: Annotated[RateLimitMiddleware, Depends(get_rate_limiter)],
) -> None:
    """Reject the request with 429 once the caller's bucket is exhausted."""
    client_id = request.client.host if request.client else "unknown"
    allowed, retry_after = await limiter.check_rate_limit(
        request.method, request.url.path, client_id
    )
    if allowed:
        return

    rate_limited_total.labels(method=request.method).inc()
    logger.warning(
        "Rate limit exceeded",
        extra={"structured": {"client": client_id, "path": request.url.path}},
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=RATE_LIMIT_MESSAGE,
        headers={"Retry-After": str(retry_after)},
    )
