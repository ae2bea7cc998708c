"""In-memory implementation of the job repository."""

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from journey_planner.app.db.repositories import JobRecord
from journey_planner.app.models.common import JobStatus


class InMemoryJobRepository:
    """In-memory implementation of JobRepository.

    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._jobs: dict[uuid.UUID, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create_job(
        self, request: dict[str, Any], *, now: datetime, expires_at: datetime
    ) -> JobRecord:
        """Create a new job."""
        record = JobRecord(
            job_id=uuid.uuid4(),
            status=JobStatus.processing,
            request=dict(request),
            created_at=now,
            expires_at=expires_at,
        )
        async with self._lock:
            self._jobs[record.job_id] = record
        return replace(record)

    async def get_job(self, job_id: uuid.UUID) -> JobRecord | None:
        """Get job by ID."""
        record = self._jobs.get(job_id)
        return replace(record) if record else None

    async def claim_job(
        self, job_id: uuid.UUID, *, worker_id: str, now: datetime, lease_seconds: int
    ) -> JobRecord | None:
        """Take a lease if the job is claimable."""
        async with self._lock:
            record = self._jobs.get(job_id)
            if record is None or not record.is_claimable(now):
                return None

            claimed = replace(
                record,
                lease_owner=worker_id,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                processing_attempts=record.processing_attempts + 1,
                version=record.version + 1,
            )
            self._jobs[job_id] = claimed
            return replace(claimed)

    async def update_job(self, record: JobRecord, *, expected_version: int) -> bool:
        """Compare-and-swap on version."""
        async with self._lock:
            stored = self._jobs.get(record.job_id)
            if stored is None or stored.version != expected_version:
                return False
            self._jobs[record.job_id] = replace(record, version=expected_version + 1)
            return True

    async def list_expired_jobs(self, now: datetime, limit: int = 100) -> list[JobRecord]:
        """List expired jobs, oldest first."""
        expired = sorted(
            (r for r in self._jobs.values() if r.is_expired(now)),
            key=lambda r: r.expires_at,
        )
        return [replace(r) for r in expired[:limit]]

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Clear all jobs (useful for testing)."""
        self._jobs.clear()
