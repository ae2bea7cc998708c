"""SQL implementation of the job repository (SQLAlchemy async, PostgreSQL)."""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from journey_planner.app.db.models import ItineraryJob
from journey_planner.app.db.repositories import JobRecord
from journey_planner.app.models.common import FailureReason, JobStatus


def _to_record(row: ItineraryJob) -> JobRecord:
    return JobRecord(
        job_id=row.job_id,
        status=JobStatus(row.status),
        request=row.request,
        created_at=row.created_at,
        expires_at=row.expires_at,
        processing_attempts=row.processing_attempts,
        failure_reason=FailureReason(row.failure_reason) if row.failure_reason else None,
        error_message=row.error_message,
        completed_at=row.completed_at,
        result=row.result,
        version=row.version,
        lease_owner=row.lease_owner,
        lease_expires_at=row.lease_expires_at,
    )


class SqlJobRepository:
    """SQL implementation of JobRepository.

    Each operation runs in its own session and transaction, so one repository
    can be shared by a long-lived worker.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_job(
        self, request: dict[str, Any], *, now: datetime, expires_at: datetime
    ) -> JobRecord:
        """Create a new job."""
        job = ItineraryJob(
            job_id=uuid.uuid4(),
            status=JobStatus.processing.value,
            request=request,
            processing_attempts=0,
            version=0,
            created_at=now,
            expires_at=expires_at,
        )

        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            return _to_record(job)

    async def get_job(self, job_id: uuid.UUID) -> JobRecord | None:
        """Get job by ID."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ItineraryJob).where(ItineraryJob.job_id == job_id)
            )
            job = result.scalar_one_or_none()
            return _to_record(job) if job else None

    async def claim_job(
        self, job_id: uuid.UUID, *, worker_id: str, now: datetime, lease_seconds: int
    ) -> JobRecord | None:
        """Take a lease with a single conditional UPDATE ... RETURNING."""
        stmt = (
            update(ItineraryJob)
            .where(
                ItineraryJob.job_id == job_id,
                ItineraryJob.status == JobStatus.processing.value,
                ItineraryJob.expires_at > now,
                or_(
                    ItineraryJob.lease_expires_at.is_(None),
                    ItineraryJob.lease_expires_at <= now,
                ),
            )
            .values(
                lease_owner=worker_id,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                processing_attempts=ItineraryJob.processing_attempts + 1,
                version=ItineraryJob.version + 1,
            )
            .returning(ItineraryJob)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            job = result.scalar_one_or_none()
            record = _to_record(job) if job else None
            await session.commit()
            return record

    async def update_job(self, record: JobRecord, *, expected_version: int) -> bool:
        """Compare-and-swap on version."""
        stmt = (
            update(ItineraryJob)
            .where(
                ItineraryJob.job_id == record.job_id,
                ItineraryJob.version == expected_version,
            )
            .values(
                status=record.status.value,
                failure_reason=record.failure_reason.value if record.failure_reason else None,
                error_message=record.error_message,
                processing_attempts=record.processing_attempts,
                result=record.result,
                completed_at=record.completed_at,
                lease_owner=record.lease_owner,
                lease_expires_at=record.lease_expires_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def list_expired_jobs(self, now: datetime, limit: int = 100) -> list[JobRecord]:
        """List expired jobs, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ItineraryJob)
                .where(ItineraryJob.expires_at <= now)
                .order_by(ItineraryJob.expires_at)
                .limit(limit)
            )
            return [_to_record(job) for job in result.scalars().all()]

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
            return True
