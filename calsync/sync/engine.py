"""Core sync engine: all-pairs placeholder reconciliation."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from calsync.config import get_settings
from calsync.database import log_sync_failure, log_sync_summary
from calsync.sync.backend import AccessDeniedError, CalendarBackend
from calsync.sync.models import (
    Availability,
    ChangeType,
    Event,
    ParticipantStatus,
    SyncResult,
    SyncSummary,
)
from calsync.sync.rules import compute_sync_actions
from calsync.sync.tracking import (
    compute_event_hash,
    create_placeholder_notes,
    decode_marker,
    generate_tracking_id,
)

logger = logging.getLogger(__name__)

ORPHAN_CLEANUP_SOURCE = "orphan-cleanup"

# Held for the duration of a sync run
_sync_lock = asyncio.Lock()


def is_sync_running() -> bool:
    """Check whether a sync run is in flight."""
    return _sync_lock.locked()


def get_placeholder_availability(source_event: Event) -> Availability:
    """
    Availability for a placeholder mirroring source_event.

    Priority:
    1. Source out of office -> unavailable
    2. Tentatively accepted -> tentative
    3. Otherwise -> busy
    """
    if source_event.availability == Availability.UNAVAILABLE:
        return Availability.UNAVAILABLE
    if source_event.participant_status == ParticipantStatus.TENTATIVE:
        return Availability.TENTATIVE
    return Availability.BUSY


def resolve_sync_window(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    days_ahead: int = 30,
) -> tuple[datetime, datetime]:
    """Default to today's start through days_ahead days later."""
    if start is None:
        start = datetime.now().astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
    if end is None:
        end = start + timedelta(days=days_ahead)
    return start, end


def generate_pairs(calendar_ids: list[str]) -> list[tuple[str, str]]:
    """All ordered (source, target) pairs of distinct calendars."""
    return [
        (source, target)
        for source in calendar_ids
        for target in calendar_ids
        if source != target
    ]


def _create_placeholder(
    backend: CalendarBackend,
    source_event: Event,
    source_calendar_id: str,
    target_calendar_id: str,
    title: str,
) -> None:
    notes = create_placeholder_notes(
        tracking_id=generate_tracking_id(),
        source_event=source_event,
        source_calendar_id=source_calendar_id,
        source_hash=compute_event_hash(source_event),
    )
    backend.create_event(
        calendar_id=target_calendar_id,
        title=title,
        start=source_event.start,
        end=source_event.end,
        all_day=source_event.all_day,
        notes=notes,
        availability=get_placeholder_availability(source_event),
    )


def _update_placeholder(
    backend: CalendarBackend,
    source_event: Event,
    placeholder: Event,
    source_calendar_id: str,
) -> None:
    record = decode_marker(placeholder.notes)
    if record is None:
        raise ValueError(f"Placeholder {placeholder.id} has no tracking record")

    notes = create_placeholder_notes(
        tracking_id=record.tracking_id,
        source_event=source_event,
        source_calendar_id=source_calendar_id,
        source_hash=compute_event_hash(source_event),
    )
    backend.update_event(
        event_id=placeholder.id,
        start=source_event.start,
        end=source_event.end,
        notes=notes,
        availability=get_placeholder_availability(source_event),
    )


def _sync_direction(
    backend: CalendarBackend,
    source_events: list[Event],
    target_events: list[Event],
    source_calendar_id: str,
    target_calendar_id: str,
    title: str,
    dry_run: bool,
) -> SyncResult:
    """Mirror one calendar into another, isolating each action's failure."""
    result = SyncResult(source_id=source_calendar_id, target_id=target_calendar_id)

    actions = compute_sync_actions(source_events, target_events, source_calendar_id)
    logger.debug(f"Direction {source_calendar_id} -> {target_calendar_id}: {len(actions)} actions")

    for action in actions:
        try:
            if action.action_type == ChangeType.CREATE:
                if not dry_run:
                    _create_placeholder(
                        backend, action.source_event, source_calendar_id, target_calendar_id, title
                    )
                result.created += 1
            elif action.action_type == ChangeType.UPDATE:
                if not dry_run:
                    _update_placeholder(
                        backend, action.source_event, action.target_event, source_calendar_id
                    )
                result.updated += 1
            elif action.action_type == ChangeType.DELETE:
                if not dry_run:
                    backend.delete_event(action.target_event.id)
                result.deleted += 1
            logger.debug(f"{action.action_type.value.upper()}: {action.reason}")
        except AccessDeniedError:
            raise
        except Exception as e:
            error_msg = f"Error in {action.action_type.value}: {e}"
            logger.error(f"{source_calendar_id} -> {target_calendar_id}: {error_msg}")
            result.errors.append(error_msg)

    return result


def _cleanup_orphaned_placeholders(
    backend: CalendarBackend,
    events_by_calendar: dict[str, list[Event]],
    active_calendar_ids: set[str],
    dry_run: bool,
) -> list[SyncResult]:
    """Delete placeholders whose source calendar is no longer being synced."""
    results: list[SyncResult] = []

    for calendar_id, events in events_by_calendar.items():
        result = SyncResult(source_id=ORPHAN_CLEANUP_SOURCE, target_id=calendar_id)
        touched = False

        for event in events:
            record = decode_marker(event.notes)
            if record is None or record.source_calendar_id in active_calendar_ids:
                continue

            touched = True
            logger.warning(
                f"Removing orphaned placeholder {event.id} in {calendar_id} "
                f"(source calendar {record.source_calendar_id} no longer active)"
            )
            try:
                if not dry_run:
                    backend.delete_event(event.id)
                result.deleted += 1
            except AccessDeniedError:
                raise
            except Exception as e:
                logger.error(f"Failed to delete orphaned placeholder {event.id}: {e}")
                result.errors.append(f"Failed to delete orphaned placeholder: {e}")

        if touched:
            results.append(result)

    return results


def _refresh_events(
    backend: CalendarBackend,
    events_by_calendar: dict[str, list[Event]],
    calendar_id: str,
    start: datetime,
    end: datetime,
    result: SyncResult,
) -> None:
    """Re-fetch a calendar after writes; keep the old snapshot on failure."""
    try:
        events_by_calendar[calendar_id] = backend.get_events(calendar_id, start, end)
    except AccessDeniedError:
        raise
    except Exception as e:
        logger.error(f"Failed to refresh events for {calendar_id}: {e}")
        result.errors.append(f"Failed to refresh events: {e}")


def run_sync(
    backend: CalendarBackend,
    calendar_ids: list[str],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    dry_run: bool = False,
    placeholder_title: Optional[str] = None,
    days_ahead: Optional[int] = None,
) -> SyncSummary:
    """
    Sync every calendar into every other one.

    Pairs are processed strictly one after another; a target that received
    writes is re-fetched before the next pair so chains of calendars converge
    within one run. Calendar fetch failures and individual action failures
    are recorded on the summary; only AccessDeniedError aborts the run.

    In dry-run mode nothing is written and counts reflect what would happen.
    """
    settings = get_settings()
    title = placeholder_title if placeholder_title is not None else settings.placeholder_title
    if days_ahead is None:
        days_ahead = settings.sync_days_ahead

    summary = SyncSummary(dry_run=dry_run, start_time=datetime.now())
    window_start, window_end = resolve_sync_window(start, end, days_ahead)

    logger.info(f"Sync period: {window_start.isoformat()} to {window_end.isoformat()}")
    logger.info(f"Calendars: {len(calendar_ids)}{' (dry run)' if dry_run else ''}")

    # Load events from all calendars
    events_by_calendar: dict[str, list[Event]] = {}

    for calendar_id in calendar_ids:
        try:
            events = backend.get_events(calendar_id, window_start, window_end)
        except AccessDeniedError:
            raise
        except Exception as e:
            logger.error(f"Failed to load events from {calendar_id}: {e}")
            summary.results.append(
                SyncResult(source_id=calendar_id, errors=[f"Failed to load events: {e}"])
            )
            continue
        events_by_calendar[calendar_id] = events
        logger.info(f"Calendar {calendar_id}: {len(events)} events")

    # Placeholders from calendars that were removed from the configuration
    orphan_results = _cleanup_orphaned_placeholders(
        backend, events_by_calendar, set(calendar_ids), dry_run
    )
    summary.results.extend(orphan_results)

    if not dry_run:
        for result in orphan_results:
            if result.deleted > 0:
                _refresh_events(
                    backend, events_by_calendar, result.target_id, window_start, window_end, result
                )

    for source_id, target_id in generate_pairs(calendar_ids):
        source_events = events_by_calendar.get(source_id)
        target_events = events_by_calendar.get(target_id)
        if source_events is None or target_events is None:
            continue

        result = _sync_direction(
            backend, source_events, target_events, source_id, target_id, title, dry_run
        )
        summary.results.append(result)

        if not dry_run and result.total_actions > 0:
            _refresh_events(
                backend, events_by_calendar, target_id, window_start, window_end, result
            )

    summary.end_time = datetime.now()
    logger.info(
        f"Sync completed: {summary.total_created} created, {summary.total_updated} updated, "
        f"{summary.total_deleted} deleted, {len(summary.all_errors)} errors"
    )
    return summary


async def trigger_sync(
    backend: CalendarBackend,
    calendar_ids: list[str],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    dry_run: bool = False,
    placeholder_title: Optional[str] = None,
    days_ahead: Optional[int] = None,
) -> Optional[SyncSummary]:
    """
    Run a sync unless one is already in progress, and record the outcome.

    Returns None when skipped. AccessDeniedError is recorded and re-raised.
    """
    if _sync_lock.locked():
        logger.info("Sync already in progress, skipping")
        return None

    async with _sync_lock:
        try:
            summary = await asyncio.to_thread(
                run_sync,
                backend,
                calendar_ids,
                start,
                end,
                dry_run,
                placeholder_title,
                days_ahead,
            )
        except AccessDeniedError as e:
            logger.error(f"Sync aborted: {e}")
            try:
                await log_sync_failure(str(e), dry_run=dry_run)
            except Exception as log_error:
                logger.exception(f"Failed to record sync failure: {log_error}")
            raise

        try:
            await log_sync_summary(summary)
        except Exception as e:
            logger.exception(f"Failed to record sync summary: {e}")

        return summary
