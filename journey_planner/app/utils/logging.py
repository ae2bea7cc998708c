"""Structured logging for the API and worker processes.

Records carry their fields in `extra={"structured": {...}}`; the formatter
installed by configure_logging renders them as key=value pairs after the
message.
"""

import logging
import uuid
from typing import Any

from journey_planner.app.tools.executor import ToolContext

logger = logging.getLogger(__name__)

# Route lookups dominate call volume; their successes are logged at DEBUG
QUIET_PROVIDERS = frozenset({"maps"})


def split_tool_name(tool_name: str) -> tuple[str, str]:
    """'maps.route' -> ('maps', 'route'); names without a dot have no call part."""
    provider, _, call = tool_name.partition(".")
    return provider, call


def job_log_fields(
    job_id: uuid.UUID | str,
    worker_id: str,
    attempt: int | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Structured extra for a consumer log line about one job."""
    structured: dict[str, Any] = {"job_id": str(job_id), "worker_id": worker_id}
    if attempt is not None:
        structured["attempt"] = attempt
    structured.update(fields)
    return {"structured": structured}


class StructuredToolLogger:
    """Logs every provider and advisor call attempt made by one worker."""

    def __init__(self, worker_id: str | None = None) -> None:
        self._worker_id = worker_id

    def log_attempt(
        self,
        ctx: ToolContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        provider, call = split_tool_name(ctx.tool_name)
        log_data: dict[str, Any] = {
            "trace_id": ctx.trace_id,
            "job_id": ctx.job_id,
            "worker_id": self._worker_id,
            "provider": provider,
            "call": call,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }
        if error_reason:
            log_data["error_reason"] = error_reason

        if outcome != "success":
            level = logging.WARNING
        elif provider in QUIET_PROVIDERS:
            level = logging.DEBUG
        else:
            level = logging.INFO

        logger.log(
            level,
            "%s call %s (attempt %d)",
            ctx.tool_name,
            outcome,
            attempt,
            extra={"structured": log_data},
        )


class StructuredFormatter(logging.Formatter):
    """Appends a record's structured fields, skipping empty ones."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        structured = getattr(record, "structured", None)
        if not structured:
            return line

        pairs = " ".join(f"{k}={v}" for k, v in structured.items() if v is not None)
        return f"{line} | {pairs}" if pairs else line


def configure_logging(level: str) -> None:
    """Configure root logging for the worker and API processes."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.basicConfig(level=level.upper(), handlers=[handler])
