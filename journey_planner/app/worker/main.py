"""Worker process entry point: python -m journey_planner.app.worker.main"""

import asyncio
import logging
import signal

from journey_planner.app.advisor.client import get_planning_advisor
from journey_planner.app.config import Settings, get_settings
from journey_planner.app.planning.pipeline import ItineraryPlanner
from journey_planner.app.services import (
    create_job_queue,
    create_job_repository,
    create_maps_provider,
)
from journey_planner.app.tools.executor import (
    BreakerRegistry,
    ToolExecutor,
    tool_config_from_settings,
)
from journey_planner.app.utils.logging import StructuredToolLogger, configure_logging
from journey_planner.app.utils.metrics import PrometheusToolMetrics
from journey_planner.app.worker.consumer import JobConsumer, default_worker_id

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings, stop_event: asyncio.Event) -> None:
    """Wire collaborators and run the consumer until stop_event is set."""
    repository = create_job_repository(settings)
    queue = create_job_queue(settings)
    maps = create_maps_provider(settings)
    advisor = await get_planning_advisor(settings)
    worker_id = default_worker_id()

    executor = ToolExecutor(
        tool_config_from_settings(settings),
        metrics=PrometheusToolMetrics(),
        logger=StructuredToolLogger(worker_id=worker_id),
        breakers=BreakerRegistry(),
    )
    planner = ItineraryPlanner(maps, advisor, executor, settings)
    consumer = JobConsumer(repository, queue, planner, settings, worker_id=worker_id)

    try:
        await consumer.run(stop_event)
    finally:
        await maps.aclose()


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Starting itinerary worker")
    await run_worker(settings, stop_event)


if __name__ == "__main__":
    asyncio.run(main())
