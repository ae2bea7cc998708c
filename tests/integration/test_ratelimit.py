"""Tests for rate limiting."""

from datetime import UTC, datetime, timedelta

import pytest

from journey_planner.app.config import Settings
from journey_planner.app.middleware.ratelimit import RateLimitMiddleware, create_default_bucket_map
from journey_planner.app.ratelimit import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    make_rate_limit_key,
)
from journey_planner.app.services import create_rate_limiter

NOW = datetime(2026, 6, 10, 10, 0, 30, tzinfo=UTC)


@pytest.mark.asyncio
async def test_rate_limiter_allows_under_quota() -> None:
    limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60)

    for i in range(5):
        assert await limiter.check_quota("client:create_job", NOW + timedelta(seconds=i)) is None


@pytest.mark.asyncio
async def test_rate_limiter_blocks_over_quota() -> None:
    limiter = InMemoryRateLimiter(max_requests=3, window_seconds=60)

    for _ in range(3):
        assert await limiter.check_quota("client:create_job", NOW) is None

    retry_after = await limiter.check_quota("client:create_job", NOW + timedelta(seconds=20))
    assert retry_after is not None
    assert retry_after.seconds == 40


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_window() -> None:
    limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60)

    await limiter.check_quota("client:get_job", NOW)
    await limiter.check_quota("client:get_job", NOW)
    assert await limiter.check_quota("client:get_job", NOW) is not None

    assert await limiter.check_quota("client:get_job", NOW + timedelta(seconds=61)) is None


@pytest.mark.asyncio
async def test_rate_limiter_separate_keys() -> None:
    limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)

    await limiter.check_quota("10.0.0.1:geocode", NOW)

    assert await limiter.check_quota("10.0.0.1:geocode", NOW) is not None
    assert await limiter.check_quota("10.0.0.2:geocode", NOW) is None


def test_make_rate_limit_key() -> None:
    assert make_rate_limit_key("10.0.0.1", "geocode") == "10.0.0.1:geocode"


class TestRateLimitMiddleware:
    """Bucket selection and enforcement."""

    @staticmethod
    def middleware(**limits: int) -> RateLimitMiddleware:
        limiters = {bucket: InMemoryRateLimiter(n) for bucket, n in limits.items()}
        return RateLimitMiddleware(limiters, create_default_bucket_map())

    @pytest.mark.asyncio
    async def test_blocks_after_bucket_limit(self) -> None:
        middleware = self.middleware(create_job=2)

        for _ in range(2):
            assert await middleware.check_rate_limit("POST", "/itinerary-jobs", "c1", NOW) == (
                True,
                0,
            )

        allowed, retry_after = await middleware.check_rate_limit(
            "POST", "/itinerary-jobs", "c1", NOW
        )
        assert allowed is False
        assert retry_after == 60

    @pytest.mark.asyncio
    async def test_methods_use_separate_buckets(self) -> None:
        middleware = self.middleware(create_job=1, get_job=1)

        await middleware.check_rate_limit("POST", "/itinerary-jobs", "c1", NOW)
        allowed, _ = await middleware.check_rate_limit("GET", "/itinerary-jobs/abc", "c1", NOW)

        assert allowed is True

    @pytest.mark.asyncio
    async def test_both_geocode_endpoints_share_a_bucket(self) -> None:
        middleware = self.middleware(geocode=1)

        await middleware.check_rate_limit("GET", "/api/geocode/search", "c1", NOW)
        allowed, _ = await middleware.check_rate_limit("GET", "/api/geocode/reverse", "c1", NOW)

        assert allowed is False

    @pytest.mark.asyncio
    async def test_unmapped_path_is_not_limited(self) -> None:
        middleware = self.middleware(create_job=1)

        for _ in range(3):
            assert await middleware.check_rate_limit("GET", "/health", "c1", NOW) == (True, 0)


def test_default_bucket_map() -> None:
    bucket_map = create_default_bucket_map()

    assert bucket_map[("POST", "/itinerary-jobs")] == "create_job"
    assert bucket_map[("GET", "/itinerary-jobs")] == "get_job"
    assert bucket_map[("GET", "/api/geocode")] == "geocode"


@pytest.mark.asyncio
async def test_default_limits_from_settings() -> None:
    settings = Settings(_env_file=None, redis_url=None)
    middleware = create_rate_limiter(settings)

    results = [
        await middleware.check_rate_limit("POST", "/itinerary-jobs", "c1", NOW) for _ in range(21)
    ]

    assert [allowed for allowed, _ in results].count(True) == 20
    assert results[-1][0] is False


@pytest.mark.redis
@pytest.mark.asyncio
async def test_redis_rate_limiter_blocks_over_quota(redis_client) -> None:
    limiter = RedisRateLimiter(redis_client, max_requests=2, window_seconds=60)
    now = datetime.now(UTC)

    assert await limiter.check_quota("c1:geocode", now) is None
    assert await limiter.check_quota("c1:geocode", now) is None

    retry_after = await limiter.check_quota("c1:geocode", now)
    assert retry_after is not None
    assert 1 <= retry_after.seconds <= 60
    assert await limiter.check_quota("c2:geocode", now) is None
