"""Generic async executor for provider and advisor calls.

Implements external call execution with:
- Hard timeout per attempt
- Bounded retries with jitter
- Per-tool circuit breaker (shared state via an injected registry)
- Cancellation support
- Metrics and structured logging
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar

from journey_planner.app.config import Settings

T = TypeVar("T")


# Exception types
class ToolTimeoutError(Exception):
    """Tool execution exceeded timeout."""

    pass


class ToolCircuitOpenError(Exception):
    """Circuit breaker is open for this tool."""

    pass


class ToolExecutionError(Exception):
    """Tool execution failed."""

    pass


class ToolCancelledError(Exception):
    """Tool execution was cancelled."""

    pass


# Raised once a call has exhausted its attempts or was rejected by the breaker
TOOL_FAILURES: tuple[type[Exception], ...] = (
    ToolTimeoutError,
    ToolCircuitOpenError,
    ToolExecutionError,
)


# Context and config types
@dataclass(frozen=True)
class ToolContext:
    """Context for tool execution with tracing."""

    trace_id: str
    job_id: str | None
    tool_name: str


@dataclass
class CancelToken:
    """Token for cancellation signaling."""

    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def throw_if_cancelled(self) -> None:
        """Raise ToolCancelledError if cancelled."""
        if self.cancelled:
            raise ToolCancelledError("job cancelled")


@dataclass
class ToolConfig:
    """Configuration for tool execution."""

    hard_timeout_ms: int
    retry_count: int
    retry_jitter_min_ms: int
    retry_jitter_max_ms: int
    breaker_failure_threshold: int = 5
    breaker_window_seconds: int = 60
    breaker_half_open_seconds: int = 30


def tool_config_from_settings(settings: Settings) -> ToolConfig:
    """Build the default tool config from application settings."""
    return ToolConfig(
        hard_timeout_ms=settings.tool_hard_timeout_ms,
        retry_count=settings.tool_retry_count,
        retry_jitter_min_ms=settings.retry_jitter_min_ms,
        retry_jitter_max_ms=settings.retry_jitter_max_ms,
        breaker_failure_threshold=settings.circuit_breaker_failures,
        breaker_window_seconds=settings.circuit_breaker_window_sec,
    )


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-tool circuit breaker.

    Tracks failures within a time window and opens after threshold.
    """

    tool_name: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    state: BreakerState = BreakerState.CLOSED
    failure_times: list[datetime] = field(default_factory=list)
    opened_at: datetime | None = None

    def record_success(self) -> None:
        """Record successful execution."""
        if self.state == BreakerState.HALF_OPEN:
            # Success in half-open -> reset to closed
            self.state = BreakerState.CLOSED
            self.failure_times.clear()
            self.opened_at = None

    def record_failure(self, now: datetime) -> None:
        """Record failed execution."""
        # Clean old failures outside window
        cutoff = now - timedelta(seconds=self.window_seconds)
        self.failure_times = [t for t in self.failure_times if t > cutoff]

        self.failure_times.append(now)

        if len(self.failure_times) >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self.opened_at = now

    def check_and_update_state(self, now: datetime) -> BreakerState:
        """Check if breaker should transition states."""
        if self.state == BreakerState.OPEN:
            if self.opened_at and (now - self.opened_at).total_seconds() >= self.half_open_seconds:
                self.state = BreakerState.HALF_OPEN

        return self.state

    def is_open(self, now: datetime) -> bool:
        """Check if breaker is currently open (rejecting calls)."""
        state = self.check_and_update_state(now)
        return state == BreakerState.OPEN


class BreakerRegistry:
    """Registry of per-tool circuit breakers.

    One registry is owned by a worker process and handed to its executor, so
    breaker state survives across jobs without module-level globals.
    """

    def __init__(self) -> None:
        self._by_tool: dict[str, CircuitBreaker] = {}

    def get_or_create(
        self,
        tool_name: str,
        failure_threshold: int,
        window_seconds: int,
        half_open_seconds: int,
    ) -> CircuitBreaker:
        """Get existing breaker for tool or create new one with given config."""
        if tool_name not in self._by_tool:
            self._by_tool[tool_name] = CircuitBreaker(
                tool_name=tool_name,
                failure_threshold=failure_threshold,
                window_seconds=window_seconds,
                half_open_seconds=half_open_seconds,
            )
        return self._by_tool[tool_name]

    def clear(self) -> None:
        """Clear all breakers (useful for testing)."""
        self._by_tool.clear()


# Metrics interface (implemented by utils.metrics)
class ToolMetrics:
    """Interface for tool execution metrics."""

    def record_latency(self, tool: str, outcome: str, latency_ms: float) -> None:
        """Record tool execution latency."""
        pass

    def inc_error(self, tool: str, reason: str) -> None:
        """Increment error counter."""
        pass


# Logging interface
class ToolLogger:
    """Interface for structured logging."""

    def log_attempt(
        self,
        ctx: ToolContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log tool execution attempt."""
        pass


class ToolExecutor:
    """Generic async tool executor with full error handling."""

    def __init__(
        self,
        config: ToolConfig,
        metrics: ToolMetrics | None = None,
        logger: ToolLogger | None = None,
        breakers: BreakerRegistry | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            config: Default execution configuration
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            breakers: Breaker registry (optional, defaults to a private one)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self._config = config
        self._metrics = metrics or ToolMetrics()
        self._logger = logger or ToolLogger()
        self._breakers = breakers or BreakerRegistry()
        self._sleep = sleep_fn or asyncio.sleep

    @property
    def config(self) -> ToolConfig:
        """Default config applied when a call passes no override."""
        return self._config

    async def execute(
        self,
        ctx: ToolContext,
        fn: Callable[[], Awaitable[T]],
        cancel_token: CancelToken | None = None,
        *,
        config: ToolConfig | None = None,
    ) -> T:
        """Execute a call with timeout, retries and circuit breaking.

        Args:
            ctx: Tool context with trace/job ids
            fn: Zero-argument coroutine factory, invoked once per attempt
            cancel_token: Cancellation token (optional, defaults to not cancelled)
            config: Per-call override of the executor config

        Returns:
            The value returned by fn

        Raises:
            ToolTimeoutError: Every attempt exceeded the hard timeout
            ToolCircuitOpenError: Circuit breaker is open
            ToolCancelledError: Execution was cancelled
            ToolExecutionError: Other execution failures
        """
        config = config or self._config
        if cancel_token is None:
            cancel_token = CancelToken()

        breaker = self._breakers.get_or_create(
            tool_name=ctx.tool_name,
            failure_threshold=config.breaker_failure_threshold,
            window_seconds=config.breaker_window_seconds,
            half_open_seconds=config.breaker_half_open_seconds,
        )

        cancel_token.throw_if_cancelled()

        if breaker.is_open(datetime.now()):
            self._metrics.record_latency(ctx.tool_name, "breaker_open", 0.0)
            self._metrics.inc_error(ctx.tool_name, "breaker_open")
            self._logger.log_attempt(ctx, 0, "breaker_open", 0.0, error_reason="breaker_open")
            raise ToolCircuitOpenError(f"Circuit breaker open for {ctx.tool_name}")

        last_error: Exception | None = None
        for attempt in range(config.retry_count + 1):
            cancel_token.throw_if_cancelled()

            attempt_start = time.monotonic()

            try:
                hard_timeout_sec = config.hard_timeout_ms / 1000
                result = await asyncio.wait_for(fn(), timeout=hard_timeout_sec)

                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                breaker.record_success()
                self._metrics.record_latency(ctx.tool_name, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "success", elapsed_ms)
                return result

            except TimeoutError as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e

                self._metrics.inc_error(ctx.tool_name, "timeout")
                self._logger.log_attempt(
                    ctx, attempt + 1, "timeout", elapsed_ms, error_reason="timeout"
                )
                breaker.record_failure(datetime.now())

            except ToolCancelledError:
                # Cancellation - don't count towards breaker
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                self._metrics.record_latency(ctx.tool_name, "cancelled", elapsed_ms)
                self._logger.log_attempt(
                    ctx, attempt + 1, "cancelled", elapsed_ms, error_reason="cancelled"
                )
                raise

            except Exception as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e

                self._metrics.inc_error(ctx.tool_name, "execution_error")
                self._logger.log_attempt(
                    ctx, attempt + 1, "error", elapsed_ms, error_reason=type(e).__name__
                )
                breaker.record_failure(datetime.now())

            if attempt < config.retry_count:
                cancel_token.throw_if_cancelled()
                jitter_ms = random.uniform(config.retry_jitter_min_ms, config.retry_jitter_max_ms)
                await self._sleep(jitter_ms / 1000)

        # All attempts exhausted
        if isinstance(last_error, TimeoutError):
            raise ToolTimeoutError(f"Tool {ctx.tool_name} timed out after all retries")
        raise ToolExecutionError(f"Tool {ctx.tool_name} failed after all retries") from last_error
