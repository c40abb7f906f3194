"""APScheduler setup for the connectivity probe."""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from trackit.core.runtime import Runtime

logger = logging.getLogger(__name__)


async def run_connectivity_check(runtime: Runtime):
    """Probe the API host and feed the result to the orchestrator."""
    online = await runtime.connectivity.check()
    runtime.orchestrator.set_online(online)


def start_scheduler(runtime: Runtime, interval_seconds: int) -> AsyncIOScheduler:
    """Start the APScheduler with the connectivity job."""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_connectivity_check,
        IntervalTrigger(seconds=interval_seconds),
        args=[runtime],
        id="connectivity_check",
        name="API connectivity check",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started - connectivity check every {interval_seconds}s")
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None):
    """Stop the APScheduler."""
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
