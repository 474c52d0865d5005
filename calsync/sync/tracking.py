"""Placeholder tracking markers and event fingerprints.

The marker and hash formats are shared with other implementations of the same
tracking scheme and must stay byte-for-byte stable:

    [CALSYNC:{"hash":"...","scal":"...","src":"...","sstart":"...","tid":"..."}]
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from calsync.sync.models import Event, TrackingRecord

logger = logging.getLogger(__name__)

TRACKING_PREFIX = "[CALSYNC:"
TRACKING_SUFFIX = "]"


def format_instant(value: datetime) -> str:
    """Format a datetime as a UTC ISO-8601 instant, e.g. 2024-01-15T10:00:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def compute_event_hash(event: Event) -> str:
    """
    Compute a 16-character fingerprint of the sync-relevant event attributes.

    Only start, end, all-day flag, availability and participation status take
    part, so placeholders are rewritten only when the busy time they represent
    actually changed.
    """
    data = {
        "start": format_instant(event.start),
        "end": format_instant(event.end),
        "all_day": event.all_day,
        "participant_status": (
            int(event.participant_status) if event.participant_status is not None else None
        ),
        "availability": int(event.availability) if event.availability is not None else None,
    }
    canonical = json.dumps(data, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def generate_tracking_id() -> str:
    """Generate a new 8-character tracking ID."""
    return str(uuid.uuid4())[:8].upper()


def encode_marker(record: TrackingRecord) -> str:
    """Serialize a tracking record into the notes-field marker."""
    payload = json.dumps(
        record.model_dump(by_alias=True, exclude_none=True),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return f"{TRACKING_PREFIX}{payload}{TRACKING_SUFFIX}"


def decode_marker(notes: Optional[str]) -> Optional[TrackingRecord]:
    """
    Extract the tracking record from a notes field.

    Returns None for notes without a marker and for markers that are
    unterminated or do not contain a valid record.
    """
    if not notes:
        return None

    start = notes.find(TRACKING_PREFIX)
    if start == -1:
        return None
    start += len(TRACKING_PREFIX)

    end = notes.find(TRACKING_SUFFIX, start)
    if end == -1:
        return None

    try:
        return TrackingRecord.model_validate_json(notes[start:end])
    except ValidationError as e:
        logger.debug(f"Ignoring malformed tracking marker: {e.error_count()} error(s)")
        return None


def is_placeholder(notes: Optional[str]) -> bool:
    """Check whether a notes field carries a tracking marker."""
    return bool(notes) and TRACKING_PREFIX in notes


def occurrence_key(event: Event) -> str:
    """Key identifying one occurrence of a (possibly recurring) event."""
    return f"{event.id}_{format_instant(event.start)}"


def occurrence_key_from_record(record: TrackingRecord) -> str:
    """Key of the source occurrence a placeholder tracks."""
    if record.source_start:
        return f"{record.source_event_id}_{record.source_start}"
    return record.source_event_id


def create_placeholder_notes(
    tracking_id: str,
    source_event: Event,
    source_calendar_id: str,
    source_hash: str,
) -> str:
    """Build the notes payload for a placeholder mirroring source_event."""
    record = TrackingRecord(
        tracking_id=tracking_id,
        source_event_id=source_event.id,
        source_calendar_id=source_calendar_id,
        source_hash=source_hash,
        source_start=format_instant(source_event.start),
    )
    return encode_marker(record)
