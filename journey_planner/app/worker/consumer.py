"""Job consumer loop: queue message -> claimed job -> planner -> terminal record.

Delivery is at-least-once, so every message is checked against the job
record before any work happens:
- unparseable messages are deleted;
- missing, terminal or expired jobs are deleted without side effects;
- a job leased by another worker is released for later redelivery;
- otherwise the job is claimed (attempt counter persisted before planning),
  planned, and the terminal result written conditionally on the claimed version.

The message is deleted after every terminal decision. Failed jobs are never
retried automatically. Cancellation (shutdown) releases both the lease and
the message without writing a terminal state.
"""

import asyncio
import logging
import socket
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

from journey_planner.app.config import Settings
from journey_planner.app.db.repositories import JobRecord, JobRepository
from journey_planner.app.models.common import FAILURE_MESSAGES, FailureReason, JobStatus
from journey_planner.app.models.request import ItineraryRequest
from journey_planner.app.planning.errors import PlanningError
from journey_planner.app.planning.pipeline import ItineraryPlanner
from journey_planner.app.queue.base import JobQueue, QueueMessage, parse_job_message
from journey_planner.app.tools.executor import CancelToken, ToolCancelledError
from journey_planner.app.utils.logging import job_log_fields
from journey_planner.app.utils.metrics import record_job_outcome

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


class JobConsumer:
    """Single-job-at-a-time consumer; run one per worker process."""

    def __init__(
        self,
        repository: JobRepository,
        queue: JobQueue,
        planner: ItineraryPlanner,
        settings: Settings,
        worker_id: str | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._planner = planner
        self._settings = settings
        self.worker_id = worker_id or default_worker_id()
        self._now = now_fn or (lambda: datetime.now(UTC))
        self._current_token: CancelToken | None = None

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set; sleeps for the poll interval when idle."""
        logger.info("Job consumer %s started", self.worker_id)
        watcher = asyncio.create_task(self._cancel_on_stop(stop_event))
        try:
            while not stop_event.is_set():
                try:
                    worked = await self.process_once()
                except Exception:
                    # Job record is already updated; keep the loop alive
                    logger.exception("Unhandled error while processing job")
                    worked = True

                if not worked:
                    await self._idle(stop_event)
        finally:
            watcher.cancel()
            logger.info("Job consumer %s stopped", self.worker_id)

    async def _cancel_on_stop(self, stop_event: asyncio.Event) -> None:
        await stop_event.wait()
        if self._current_token is not None:
            self._current_token.cancel()

    async def _idle(self, stop_event: asyncio.Event) -> None:
        try:
            await self._queue.requeue_stale()
        except Exception:
            logger.exception("Failed to requeue stale messages")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self._settings.poll_interval_seconds)
        except TimeoutError:
            pass

    async def process_once(self) -> bool:
        """Handle at most one message.

        Returns:
            True if a message was consumed, False if the queue was empty or the
            job was deferred to another worker (caller should back off)

        Raises:
            Exception: Unclassified planner errors, after the job is recorded
                as internal_error and the message deleted
        """
        message = await self._queue.receive()
        if message is None:
            return False

        job_id = parse_job_message(message.body)
        if job_id is None:
            logger.warning("Discarding unparseable queue message: %r", message.body[:200])
            await self._queue.delete(message)
            record_job_outcome("discarded")
            return True

        now = self._now()
        record = await self._repository.get_job(job_id)
        if record is None or record.status.is_terminal or record.is_expired(now):
            logger.info(
                "Discarding message for job %s (%s)",
                job_id,
                "missing" if record is None else record.status.value,
                extra=job_log_fields(job_id, self.worker_id),
            )
            await self._queue.delete(message)
            record_job_outcome("discarded")
            return True

        claimed = await self._repository.claim_job(
            job_id,
            worker_id=self.worker_id,
            now=now,
            lease_seconds=self._settings.job_lease_seconds,
        )
        if claimed is None:
            logger.info(
                "Job %s is leased by another worker, deferring",
                job_id,
                extra=job_log_fields(job_id, self.worker_id),
            )
            await self._queue.release(message)
            record_job_outcome("deferred")
            return False

        await self._plan_claimed(claimed, message)
        return True

    async def _plan_claimed(self, claimed: JobRecord, message: QueueMessage) -> None:
        job_id = claimed.job_id
        token = CancelToken()
        self._current_token = token
        log_extra = job_log_fields(job_id, self.worker_id, claimed.processing_attempts)
        logger.info("Planning job %s", job_id, extra=log_extra)

        try:
            request = ItineraryRequest.model_validate(claimed.request)
            result = await self._planner.plan(request, job_id=str(job_id), cancel_token=token)

        except ToolCancelledError:
            logger.warning("Job %s cancelled, releasing lease", job_id, extra=log_extra)
            released = replace(claimed, lease_owner=None, lease_expires_at=None)
            await self._repository.update_job(released, expected_version=claimed.version)
            await self._queue.release(message)
            record_job_outcome("cancelled")

        except PlanningError as e:
            logger.info(
                "Job %s failed: %s",
                job_id,
                e.reason.value,
                extra=job_log_fields(
                    job_id, self.worker_id, claimed.processing_attempts, reason=e.reason.value
                ),
            )
            await self._write_terminal(
                claimed, status=JobStatus.failed, reason=e.reason, message=e.message
            )
            await self._queue.delete(message)
            record_job_outcome(e.reason.value)

        except Exception:
            logger.warning(
                "Job %s hit an unclassified error, recording internal_error", job_id, extra=log_extra
            )
            await self._write_terminal(
                claimed,
                status=JobStatus.failed,
                reason=FailureReason.internal_error,
                message=FAILURE_MESSAGES[FailureReason.internal_error],
            )
            await self._queue.delete(message)
            record_job_outcome(FailureReason.internal_error.value)
            raise

        else:
            await self._write_terminal(
                claimed,
                status=JobStatus.completed,
                result=result.model_dump(mode="json", by_alias=True),
            )
            await self._queue.delete(message)
            record_job_outcome("completed")
            logger.info(
                "Job %s completed with %d stops", job_id, result.summary.stops_count, extra=log_extra
            )

        finally:
            self._current_token = None

    async def _write_terminal(
        self,
        claimed: JobRecord,
        *,
        status: JobStatus,
        reason: FailureReason | None = None,
        message: str | None = None,
        result: dict | None = None,
    ) -> None:
        terminal = replace(
            claimed,
            status=status,
            failure_reason=reason,
            error_message=message,
            result=result,
            completed_at=self._now(),
            lease_owner=None,
            lease_expires_at=None,
        )
        written = await self._repository.update_job(terminal, expected_version=claimed.version)
        if not written:
            logger.warning(
                "Job %s changed since it was claimed; %s result not written",
                claimed.job_id,
                status.value,
            )
