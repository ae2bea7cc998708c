"""Rate limiting for the public API."""

from datetime import UTC, datetime

from journey_planner.app.ratelimit import RateLimiter, make_rate_limit_key

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."

# (method, path prefix) -> bucket
BucketMap = dict[tuple[str, str], str]


class RateLimitMiddleware:
    """Maps requests to buckets and enforces each bucket's limiter."""

    def __init__(self, limiters: dict[str, RateLimiter], bucket_map: BucketMap) -> None:
        """Initialize rate limit middleware.

        Args:
            limiters: Limiter per bucket name
            bucket_map: Mapping from (method, path prefix) to bucket names
        """
        self._limiters = limiters
        self._bucket_map = bucket_map

    async def check_rate_limit(
        self, method: str, path: str, client_id: str, now: datetime | None = None
    ) -> tuple[bool, int]:
        """Check if request is allowed under rate limit.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        if now is None:
            now = datetime.now(UTC)

        bucket = self._get_bucket(method, path)
        if bucket is None or bucket not in self._limiters:
            return (True, 0)

        key = make_rate_limit_key(client_id, bucket)
        retry_after = await self._limiters[bucket].check_quota(key, now)

        if retry_after is None:
            return (True, 0)

        return (False, retry_after.seconds)

    def _get_bucket(self, method: str, path: str) -> str | None:
        for (rule_method, prefix), bucket in self._bucket_map.items():
            if rule_method == method.upper() and path.startswith(prefix):
                return bucket

        return None


def create_default_bucket_map() -> BucketMap:
    """Create default bucket mapping."""
    return {
        ("POST", "/itinerary-jobs"): "create_job",
        ("GET", "/itinerary-jobs"): "get_job",
        ("GET", "/api/geocode"): "geocode",
    }
