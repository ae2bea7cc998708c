"""FastAPI application - itinerary jobs, geocoding and health."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from journey_planner.app.api.routes.geocode import router as geocode_router
from journey_planner.app.api.routes.health import router as health_router
from journey_planner.app.api.routes.jobs import router as jobs_router
from journey_planner.app.api.routes.metrics import router as metrics_router
from journey_planner.app.config import get_settings
from journey_planner.app.services import (
    create_job_queue,
    create_job_repository,
    create_maps_provider,
    create_rate_limiter,
)
from journey_planner.app.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    app.state.job_repository = create_job_repository(settings)
    app.state.job_queue = create_job_queue(settings)
    app.state.rate_limiter = create_rate_limiter(settings)
    # Job endpoints work without a maps key; geocoding answers 503 until one is set
    app.state.maps_provider = (
        create_maps_provider(settings)
        if settings.azure_maps_subscription_key.get_secret_value()
        else None
    )
    yield
    if app.state.maps_provider is not None:
        await app.state.maps_provider.aclose()


app = FastAPI(title="Journey Planner API", version="0.1.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are client errors (400), not 422."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(jobs_router)
app.include_router(geocode_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Journey Planner API", "version": "0.1.0"}
