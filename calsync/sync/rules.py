"""Sync rules: which events get mirrored and what a target calendar needs."""

import logging
from datetime import datetime, timezone
from typing import Iterable

from calsync.sync.models import (
    Availability,
    ChangeType,
    Event,
    ParticipantStatus,
    SyncAction,
)
from calsync.sync.tracking import (
    compute_event_hash,
    decode_marker,
    is_placeholder,
    occurrence_key,
    occurrence_key_from_record,
)

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def should_sync_event(event: Event) -> bool:
    """
    Determine if an event should be mirrored into other calendars.

    Rules:
    - Skip placeholders (our own events)
    - Skip events marked as free
    - Skip events the user has not answered yet or declined
    """
    if is_placeholder(event.notes):
        return False

    if event.availability == Availability.FREE:
        return False

    if event.participant_status in (ParticipantStatus.PENDING, ParticipantStatus.DECLINED):
        return False

    return True


def _modified_at(event: Event) -> datetime:
    value = event.last_modified
    if value is None:
        return _OLDEST
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _index_placeholders(
    target_events: Iterable[Event],
    source_calendar_id: str,
) -> tuple[dict[str, Event], list[Event]]:
    """
    Index the target's placeholders for source_calendar_id by occurrence key.

    Returns the index and the redundant duplicates that lost the tie-break.
    """
    placeholders: dict[str, Event] = {}
    duplicates: list[Event] = []

    for event in target_events:
        if not is_placeholder(event.notes):
            continue
        record = decode_marker(event.notes)
        if record is None or record.source_calendar_id != source_calendar_id:
            continue

        key = occurrence_key_from_record(record)
        existing = placeholders.get(key)
        if existing is not None:
            # Newest modification wins; on a tie the later one does.
            if _modified_at(event) >= _modified_at(existing):
                placeholders[key] = event
                loser = existing
            else:
                loser = event
            logger.warning(
                f"Duplicate placeholders for occurrence {key} in calendar "
                f"{event.calendar_id}, keeping {placeholders[key].id}"
            )
            duplicates.append(loser)
            continue

        placeholders[key] = event

    return placeholders, duplicates


def compute_sync_actions(
    source_events: list[Event],
    target_events: list[Event],
    source_calendar_id: str,
) -> list[SyncAction]:
    """
    Compute the actions needed to mirror source_events into the target calendar.

    Creates and updates come first, in source order, followed by deletes of
    placeholders whose source occurrence is gone.
    """
    actions: list[SyncAction] = []

    real_source_events = [e for e in source_events if should_sync_event(e)]
    placeholders, duplicates = _index_placeholders(target_events, source_calendar_id)

    for source in real_source_events:
        key = occurrence_key(source)
        placeholder = placeholders.get(key)

        if placeholder is None:
            actions.append(SyncAction(
                action_type=ChangeType.CREATE,
                source_event=source,
                reason="New event, creating placeholder",
            ))
            continue

        record = decode_marker(placeholder.notes)
        if record is None:
            continue

        current_hash = compute_event_hash(source)
        if record.source_hash != current_hash:
            actions.append(SyncAction(
                action_type=ChangeType.UPDATE,
                source_event=source,
                target_event=placeholder,
                reason=f"Event changed (hash: {record.source_hash[:8]} -> {current_hash[:8]})",
            ))

    source_keys = {occurrence_key(e) for e in real_source_events}

    for key, placeholder in placeholders.items():
        if key not in source_keys:
            actions.append(SyncAction(
                action_type=ChangeType.DELETE,
                target_event=placeholder,
                reason="Source event deleted, removing placeholder",
            ))

    for duplicate in duplicates:
        actions.append(SyncAction(
            action_type=ChangeType.DELETE,
            target_event=duplicate,
            reason="Duplicate placeholder, removing",
        ))

    return actions
