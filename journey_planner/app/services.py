"""Factories for storage, queue and provider backends from settings.

SQL storage is used when DATABASE_URL is set and Redis when REDIS_URL is set;
otherwise the in-memory implementations are used (single-process dev/tests).
"""

import logging

import redis.asyncio as redis

from journey_planner.app.config import Settings
from journey_planner.app.db.engine import create_async_engine_from_settings, create_session_factory
from journey_planner.app.db.inmemory import InMemoryJobRepository
from journey_planner.app.db.repositories import JobRepository
from journey_planner.app.db.sql_repositories import SqlJobRepository
from journey_planner.app.middleware.ratelimit import RateLimitMiddleware, create_default_bucket_map
from journey_planner.app.providers.maps import AzureMapsProvider
from journey_planner.app.queue.base import InMemoryJobQueue, JobQueue
from journey_planner.app.queue.redis_queue import RedisJobQueue
from journey_planner.app.ratelimit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)


def create_job_repository(settings: Settings) -> JobRepository:
    if settings.database_url:
        engine = create_async_engine_from_settings(settings)
        return SqlJobRepository(create_session_factory(engine))

    logger.warning("DATABASE_URL not set, using in-memory job repository")
    return InMemoryJobRepository()


def create_job_queue(settings: Settings) -> JobQueue:
    if settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        return RedisJobQueue(
            client,
            queue_name=settings.queue_name,
            processing_queue_name=settings.processing_queue_name,
            visibility_timeout_seconds=settings.queue_visibility_timeout_seconds,
        )

    logger.warning("REDIS_URL not set, using in-memory job queue")
    return InMemoryJobQueue()


def create_maps_provider(settings: Settings) -> AzureMapsProvider:
    return AzureMapsProvider(
        subscription_key=settings.azure_maps_subscription_key.get_secret_value(),
        base_url=settings.azure_maps_base_url,
        transit_stop_category_id=settings.transit_stop_category_id,
    )


def create_rate_limiter(settings: Settings) -> RateLimitMiddleware:
    limits = {
        "create_job": settings.rate_limit_post_per_minute,
        "get_job": settings.rate_limit_get_per_minute,
        "geocode": settings.rate_limit_geocode_per_minute,
    }
    window = settings.rate_limit_window_seconds

    limiters: dict[str, RateLimiter]
    if settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        limiters = {b: RedisRateLimiter(client, n, window) for b, n in limits.items()}
    else:
        logger.warning("REDIS_URL not set, rate limits are per process")
        limiters = {b: InMemoryRateLimiter(n, window) for b, n in limits.items()}

    return RateLimitMiddleware(limiters, create_default_bucket_map())
