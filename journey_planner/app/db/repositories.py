"""Repository protocol interfaces for itinerary job storage."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from journey_planner.app.models.common import FailureReason, JobStatus


@dataclass
class JobRecord:
    """Itinerary job data record.

    `version` increases on every write; conditional updates compare it.
    `result` is set only when the job completed.
    """

    job_id: UUID
    status: JobStatus
    request: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    processing_attempts: int = 0
    failure_reason: FailureReason | None = None
    error_message: str | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    version: int = 0
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def has_live_lease(self, now: datetime) -> bool:
        return self.lease_expires_at is not None and self.lease_expires_at > now

    def is_claimable(self, now: datetime) -> bool:
        return (
            self.status is JobStatus.processing
            and not self.is_expired(now)
            and not self.has_live_lease(now)
        )


class JobRepository(Protocol):
    """Repository for itinerary job operations."""

    async def create_job(
        self, request: dict[str, Any], *, now: datetime, expires_at: datetime
    ) -> JobRecord:
        """Create a new job in processing state.

        Args:
            request: Serialized itinerary request
            now: Creation timestamp
            expires_at: Time after which the job is no longer served or planned

        Returns:
            Created job record
        """
        ...

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        """Get job by ID, or None if not found."""
        ...

    async def claim_job(
        self, job_id: UUID, *, worker_id: str, now: datetime, lease_seconds: int
    ) -> JobRecord | None:
        """Atomically take a lease on a claimable job.

        A job is claimable while it is processing, not expired and carries no
        live lease. A successful claim sets the lease owner and expiry and
        increments both processing_attempts and version.

        Returns:
            The claimed record, or None when the job is missing or not claimable
        """
        ...

    async def update_job(self, record: JobRecord, *, expected_version: int) -> bool:
        """Write the record if the stored version still equals expected_version.

        The stored version becomes expected_version + 1 on success.

        Returns:
            True if written, False on a version conflict or missing job
        """
        ...

    async def list_expired_jobs(self, now: datetime, limit: int = 100) -> list[JobRecord]:
        """Jobs whose expiry has passed, oldest first."""
        ...

    async def ping(self) -> bool:
        """Whether the store is reachable."""
        ...
