"""APScheduler setup for background jobs."""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from calsync.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def setup_scheduler() -> AsyncIOScheduler:
    """Set up and start the background scheduler."""
    global _scheduler

    settings = get_settings()

    _scheduler = AsyncIOScheduler()

    if settings.sync_interval_minutes > 0:
        # Periodic sync, first run right away
        _scheduler.add_job(
            "calsync.jobs.sync_job:run_periodic_sync",
            trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
            id="periodic_sync",
            name="Periodic Calendar Sync",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Periodic sync every {settings.sync_interval_minutes} minutes")
    else:
        logger.info("Periodic sync disabled (SYNC_INTERVAL_MINUTES=0), manual sync only")

    _scheduler.start()
    logger.info("Background scheduler started")

    return _scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler
