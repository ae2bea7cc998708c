"""Itinerary job endpoints - POST /itinerary-jobs and GET /itinerary-jobs/{job_id}."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from journey_planner.app.api.deps import enforce_rate_limit, get_job_queue, get_job_repository
from journey_planner.app.config import Settings, get_settings
from journey_planner.app.db.repositories import JobRepository
from journey_planner.app.models.common import FailureReason, JobStatus
from journey_planner.app.models.request import ItineraryRequest
from journey_planner.app.queue.base import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/itinerary-jobs",
    tags=["itinerary-jobs"],
    dependencies=[Depends(enforce_rate_limit)],
)

NO_ITINERARY = "NO_ITINERARY"


class CreateJobResponse(BaseModel):
    """Response for POST /itinerary-jobs."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")


class JobStatusResponse(BaseModel):
    """Response for GET /itinerary-jobs/{job_id}."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: JobStatus
    result: dict[str, Any] | None = None


def validate_business_rules(request: ItineraryRequest, settings: Settings) -> list[str]:
    """Request checks beyond field types and coordinate ranges."""
    errors: list[str] = []

    if not (
        settings.min_duration_minutes
        <= request.max_duration_minutes
        <= settings.max_duration_minutes
    ):
        errors.append(
            f"max_duration_minutes must be between {settings.min_duration_minutes} "
            f"and {settings.max_duration_minutes}"
        )

    if not request.interest_terms:
        errors.append("interests must not be empty")
    elif len(request.interests) > settings.max_interests_length:
        errors.append(f"interests must be at most {settings.max_interests_length} characters")

    if request.language not in settings.supported_languages:
        errors.append(
            f"language must be one of: {', '.join(settings.supported_languages)}"
        )

    return errors


def _no_itinerary(status_code: int, reason: str, message: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"code": NO_ITINERARY, "reason": reason}
    if message is not None:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


@router.post(
    "",
    response_model=CreateJobResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_itinerary_job(
    request: ItineraryRequest,
    response: Response,
    repository: Annotated[JobRepository, Depends(get_job_repository)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CreateJobResponse:
    """Create an itinerary job and enqueue it for a worker.

    Returns:
        202 with the job id, a Location header and a Retry-After hint

    Raises:
        HTTPException: 400 if the request breaks a business rule
    """
    errors = validate_business_rules(request, settings)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=errors)

    now = datetime.now(UTC)
    record = await repository.create_job(
        request.model_dump(mode="json"),
        now=now,
        expires_at=now + timedelta(hours=settings.job_ttl_hours),
    )
    await queue.enqueue(record.job_id)

    logger.info(
        "Created itinerary job %s",
        record.job_id,
        extra={
            "structured": {
                "job_id": str(record.job_id),
                "mode": request.mode.value,
                "budget_minutes": request.max_duration_minutes,
            }
        },
    )

    response.headers["Location"] = f"{router.prefix}/{record.job_id}"
    response.headers["Retry-After"] = str(settings.processing_retry_after_seconds)
    return CreateJobResponse(job_id=str(record.job_id))


@router.get("/{job_id}", response_model=None)
async def get_itinerary_job(
    job_id: str,
    repository: Annotated[JobRepository, Depends(get_job_repository)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> JSONResponse:
    """Job status, and the itinerary once completed.

    Returns:
        200 completed with result, 202 still processing (Retry-After),
        400 malformed id, 404 missing or failed, 410 expired
    """
    try:
        parsed_id = uuid.UUID(job_id)
    except ValueError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid job ID format"},
        )

    record = await repository.get_job(parsed_id)
    if record is None:
        return _no_itinerary(status.HTTP_404_NOT_FOUND, "Job not found or expired")

    if record.is_expired(datetime.now(UTC)):
        return _no_itinerary(status.HTTP_410_GONE, "Job expired")

    body = JobStatusResponse(job_id=str(record.job_id), status=record.status)

    if record.status is JobStatus.processing:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(mode="json", by_alias=True),
            headers={"Retry-After": str(settings.processing_retry_after_seconds)},
        )

    if record.status is JobStatus.completed:
        body.result = record.result
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=body.model_dump(mode="json", by_alias=True),
        )

    reason = record.failure_reason or FailureReason.internal_error
    return _no_itinerary(status.HTTP_404_NOT_FOUND, reason.value, record.error_message)
