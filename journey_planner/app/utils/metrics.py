"""Prometheus metrics for tool calls and itinerary jobs."""

from prometheus_client import Counter, Histogram

# Tool execution metrics
tool_latency_ms = Histogram(
    "tool_latency_ms",
    "Tool execution latency in milliseconds",
    ["tool", "outcome"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000, 16000],
)

tool_errors_total = Counter(
    "tool_errors_total",
    "Total tool execution errors",
    ["tool", "reason"],
)

route_cache_hits_total = Counter(
    "route_cache_hits_total",
    "Route lookups served from the per-job route cache",
)

# Job metrics
itinerary_jobs_total = Counter(
    "itinerary_jobs_total",
    "Itinerary jobs handled by the consumer, by outcome",
    ["outcome"],
)

itinerary_planning_seconds = Histogram(
    "itinerary_planning_seconds",
    "Wall-clock time spent planning one itinerary",
    buckets=[1, 2, 5, 10, 20, 30, 60, 120, 300],
)

# API metrics
rate_limited_total = Counter(
    "rate_limited_total",
    "Requests rejected by the API rate limiter",
    ["method"],
)


class PrometheusToolMetrics:
    """Prometheus-based tool metrics implementation."""

    def record_latency(self, tool: str, outcome: str, latency_ms: float) -> None:
        """Record tool execution latency."""
        tool_latency_ms.labels(tool=tool, outcome=outcome).observe(latency_ms)

    def inc_error(self, tool: str, reason: str) -> None:
        """Increment error counter."""
        tool_errors_total.labels(tool=tool, reason=reason).inc()


def record_job_outcome(outcome: str) -> None:
    """Count a consumer decision (completed, a failure reason, discarded, deferred)."""
    itinerary_jobs_total.labels(outcome=outcome).inc()
