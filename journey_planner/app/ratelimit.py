"""Rate limiting utilities."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as redis


@dataclass(frozen=True)
class RetryAfter:
    """Rate limit retry-after information."""

    seconds: int


class RateLimiter(Protocol):
    """Rate limiter interface."""

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available.

        Args:
            key: Rate limit key
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        ...


def make_rate_limit_key(client_id: str, bucket: str) -> str:
    """Create rate limit key from client identity and bucket.

    Args:
        client_id: Caller identity (remote address)
        bucket: Bucket name (e.g., "create_job", "geocode")

    Returns:
        Rate limit key
    """
    return f"{client_id}:{bucket}"


class RedisRateLimiter:
    """Redis-based rate limiter using INCR + EXPIRE pattern.

    Counters are shared by every API replica pointing at the same Redis.
    """

    def __init__(self, redis_client: redis.Redis, max_requests: int, window_seconds: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            redis_client: Async Redis client
            max_requests: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
        """
        self._redis = redis_client
        self._max_requests = max_requests
        self._window_seconds = window_seconds

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        # Window-aligned key so every replica counts into the same bucket
        window_start = int(now.timestamp() / self._window_seconds) * self._window_seconds
        redis_key = f"ratelimit:{key}:{window_start}"

        count = await self._redis.incr(redis_key)
        if count == 1:
            await self._redis.expire(redis_key, self._window_seconds)

        if count > self._max_requests:
            ttl = await self._redis.ttl(redis_key)
            return RetryAfter(seconds=max(1, ttl))

        return None


class InMemoryRateLimiter:
    """In-memory implementation of RateLimiter using fixed window."""

    def __init__(self, max_requests: int, window_seconds: int = 60) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._windows: dict[str, tuple[datetime, int]] = {}

    async def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        window = timedelta(seconds=self._window_seconds)

        if key not in self._windows:
            self._windows[key] = (now, 1)
            return None

        window_start, count = self._windows[key]
        if now >= window_start + window:
            self._windows[key] = (now, 1)
            return None

        if count >= self._max_requests:
            seconds_remaining = int((window_start + window - now).total_seconds())
            return RetryAfter(seconds=max(1, seconds_remaining))

        self._windows[key] = (window_start, count + 1)
        return None
