"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /ready: readiness, job store and queue reachability, 503 when either fails
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from journey_planner.app.api.deps import get_job_queue, get_job_repository
from journey_planner.app.db.repositories import JobRepository
from journey_planner.app.queue.base import JobQueue

router = APIRouter()


async def check_store(repository: JobRepository) -> tuple[bool, str]:
    """Check job store connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        await repository.ping()
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


async def check_queue(queue: JobQueue) -> tuple[bool, str]:
    """Check queue connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        await queue.ping()
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check for Docker/k8s."""
    return {"status": "ok"}


@router.get("/ready", response_model=None)
async def ready(
    repository: Annotated[JobRepository, Depends(get_job_repository)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> dict[str, Any] | JSONResponse:
    """Readiness: 200 when store and queue respond, 503 otherwise."""
    store_ok, store_status = await check_store(repository)
    queue_ok, queue_status = await check_queue(queue)

    response_body = {
        "status": "ok" if store_ok and queue_ok else "degraded",
        "components": {
            "store": store_status,
            "queue": queue_status,
        },
    }

    if not (store_ok and queue_ok):
        return JSONResponse(content=response_body, status_code=503)

    return response_body
