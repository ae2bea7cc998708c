"""Job queue protocol and message envelope."""

import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    """A delivered message. `receipt` identifies it for delete/release."""

    body: str
    receipt: str


def encode_job_message(job_id: uuid.UUID, message_id: str | None = None) -> str:
    """Message body for a job; message_id makes repeated enqueues distinct."""
    payload = {"jobId": str(job_id)}
    if message_id is not None:
        payload["messageId"] = message_id
    return json.dumps(payload)


def parse_job_message(body: str) -> uuid.UUID | None:
    """Extract the job id from a message body, or None if it is unusable."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None

    if not isinstance(payload, dict):
        return None

    raw = payload.get("jobId") or payload.get("JobId")
    if not isinstance(raw, str):
        return None

    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


class JobQueue(Protocol):
    """At-least-once job queue."""

    async def enqueue(self, job_id: uuid.UUID) -> None:
        """Publish a job reference."""
        ...

    async def receive(self) -> QueueMessage | None:
        """Take at most one message, or None if the queue is empty.

        A received message stays invisible to other consumers until it is
        deleted, released, or held past the visibility timeout.
        """
        ...

    async def delete(self, message: QueueMessage) -> None:
        """Acknowledge a message so it is never redelivered."""
        ...

    async def release(self, message: QueueMessage) -> None:
        """Return a message to the queue for later redelivery."""
        ...

    async def requeue_stale(self, now: float | None = None) -> int:
        """Redeliver messages held past the visibility timeout; returns how many."""
        ...

    async def ping(self) -> bool:
        """Whether the queue backend is reachable."""
        ...


class InMemoryJobQueue:
    """In-memory implementation of JobQueue."""

    def __init__(self, visibility_timeout_seconds: int = 600) -> None:
        self._pending: deque[str] = deque()
        # receipt -> (body, received_at)
        self._in_flight: dict[str, tuple[str, float]] = {}
        self._visibility_timeout = visibility_timeout_seconds

    async def enqueue(self, job_id: uuid.UUID) -> None:
        self.enqueue_raw(encode_job_message(job_id))

    def enqueue_raw(self, body: str) -> None:
        """Publish an arbitrary body (useful for testing malformed messages)."""
        self._pending.append(body)

    async def receive(self) -> QueueMessage | None:
        if not self._pending:
            return None
        body = self._pending.popleft()
        receipt = str(uuid.uuid4())
        self._in_flight[receipt] = (body, time.time())
        return QueueMessage(body=body, receipt=receipt)

    async def delete(self, message: QueueMessage) -> None:
        self._in_flight.pop(message.receipt, None)

    async def release(self, message: QueueMessage) -> None:
        entry = self._in_flight.pop(message.receipt, None)
        if entry is not None:
            self._pending.append(entry[0])

    async def requeue_stale(self, now: float | None = None) -> int:
        now = now if now is not None else time.time()
        cutoff = now - self._visibility_timeout
        stale = [r for r, (_, received_at) in self._in_flight.items() if received_at <= cutoff]
        for receipt in stale:
            body, _ = self._in_flight.pop(receipt)
            self._pending.append(body)
        return len(stale)

    async def ping(self) -> bool:
        return True

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)
