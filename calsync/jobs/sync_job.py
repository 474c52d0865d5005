"""Periodic sync job."""

import logging

from calsync.config import get_settings, get_sync_calendar_ids, is_sync_configured
from calsync.sync.backend import AccessDeniedError
from calsync.sync.engine import trigger_sync
from calsync.sync.google_calendar import get_calendar_backend

logger = logging.getLogger(__name__)


async def run_periodic_sync() -> None:
    """Run one sync pass over the configured calendars."""
    settings = get_settings()
    calendar_ids = get_sync_calendar_ids()

    if not is_sync_configured():
        logger.warning(
            f"Not enough calendars configured for sync "
            f"({len(calendar_ids)} of {settings.min_calendars_required})"
        )
        return

    logger.info(f"Running periodic sync for {len(calendar_ids)} calendars")

    try:
        summary = await trigger_sync(
            get_calendar_backend(),
            calendar_ids,
            placeholder_title=settings.placeholder_title,
            days_ahead=settings.sync_days_ahead,
        )
    except AccessDeniedError as e:
        logger.error(f"Periodic sync aborted, calendar access denied: {e}")
        return

    if summary is None:
        logger.debug("Periodic sync already running, skipping")
        return

    logger.info(
        f"Periodic sync completed: {summary.total_created} created, "
        f"{summary.total_updated} updated, {summary.total_deleted} deleted"
    )
    for error in summary.all_errors:
        logger.error(f"Sync error: {error}")
