"""Google Calendar backend."""

import logging
import os
import threading
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.config import get_settings
from calsync.sync.backend import (
    AccessDeniedError,
    CalendarBackendError,
    CalendarNotFoundError,
    CalendarReadOnlyError,
    DeleteFailedError,
    EventNotFoundError,
    SaveFailedError,
)
from calsync.sync.models import Availability, CalendarInfo, Event, ParticipantStatus

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Private extended property holding the availability we assigned a placeholder.
# Google only knows opaque/transparent, so the finer value is kept here.
AVAILABILITY_PROPERTY = "calsyncAvailability"

_RESPONSE_STATUS = {
    "needsAction": ParticipantStatus.PENDING,
    "accepted": ParticipantStatus.ACCEPTED,
    "declined": ParticipantStatus.DECLINED,
    "tentative": ParticipantStatus.TENTATIVE,
}

_WRITABLE_ROLES = ("owner", "writer")


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _rfc3339(value: datetime) -> str:
    return _to_utc(value).isoformat().replace("+00:00", "Z")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_event_time(value: dict) -> tuple[datetime, bool]:
    """Parse a Google start/end dict. All-day dates become midnight UTC."""
    if "date" in value:
        day = date.fromisoformat(value["date"])
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc), True
    return _parse_datetime(value["dateTime"]), False


def _event_times(start: datetime, end: datetime, all_day: bool) -> dict:
    if all_day:
        return {
            "start": {"date": _to_utc(start).date().isoformat()},
            "end": {"date": _to_utc(end).date().isoformat()},
        }
    return {
        "start": {"dateTime": _rfc3339(start), "timeZone": "UTC"},
        "end": {"dateTime": _rfc3339(end), "timeZone": "UTC"},
    }


def availability_from_event(event: dict) -> Availability:
    """
    Derive the availability of a Google event.

    Placeholders carry their own value in a private extended property;
    otherwise out-of-office events are unavailable and transparent events free.
    """
    private_props = event.get("extendedProperties", {}).get("private", {})
    raw = private_props.get(AVAILABILITY_PROPERTY)
    if raw is not None:
        try:
            return Availability(int(raw))
        except ValueError:
            logger.debug(f"Ignoring invalid availability property on {event.get('id')}: {raw}")

    if event.get("eventType") == "outOfOffice":
        return Availability.UNAVAILABLE
    if event.get("transparency") == "transparent":
        return Availability.FREE
    return Availability.BUSY


def participant_status_from_event(event: dict) -> Optional[ParticipantStatus]:
    """Return the user's own response, or None when they are not an attendee."""
    for attendee in event.get("attendees", []):
        if attendee.get("self"):
            return _RESPONSE_STATUS.get(attendee.get("responseStatus"))
    return None


def event_from_google(calendar_id: str, event: dict) -> Event:
    """Convert a Google Calendar API event into an Event snapshot."""
    start, all_day = _parse_event_time(event["start"])
    end, _ = _parse_event_time(event["end"])

    last_modified = None
    if event.get("updated"):
        try:
            last_modified = _parse_datetime(event["updated"])
        except ValueError:
            logger.debug(f"Unparseable update time on {event.get('id')}: {event['updated']}")

    return Event(
        id=event["id"],
        calendar_id=calendar_id,
        title=event.get("summary", ""),
        start=start,
        end=end,
        all_day=all_day,
        notes=event.get("description"),
        location=event.get("location"),
        availability=availability_from_event(event),
        participant_status=participant_status_from_event(event),
        last_modified=last_modified,
    )


class GoogleCalendarBackend:
    """Calendar backend on top of the Google Calendar API."""

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        token_file: Optional[str] = None,
        client_secrets_file: Optional[str] = None,
    ):
        self.credentials = credentials
        self.token_file = token_file
        self.client_secrets_file = client_secrets_file
        self.settings = get_settings()
        self._service = None
        # Events from the latest listing of each calendar, so writes can be
        # addressed by id alone.
        self._known_events: dict[str, Event] = {}
        # The API client shares one HTTP connection; calls must not overlap.
        self._lock = threading.Lock()

    @property
    def service(self):
        if self._service is None:
            if self.credentials is None:
                self.credentials = self._load_credentials()
            self._service = build("calendar", "v3", credentials=self.credentials, cache_discovery=False)
        return self._service

    def _load_credentials(self) -> Credentials:
        """Load stored credentials, refreshing them if they expired."""
        if not self.token_file or not os.path.exists(self.token_file):
            raise AccessDeniedError("No Google token available, request access first")

        try:
            creds = Credentials.from_authorized_user_file(self.token_file, SCOPES)
            if not creds.valid and creds.expired and creds.refresh_token:
                creds.refresh(Request())
                self._save_credentials(creds)
        except (RefreshError, ValueError) as e:
            raise AccessDeniedError(f"Google credentials unusable: {e}") from e

        if not creds.valid:
            raise AccessDeniedError("Google credentials are invalid, request access again")
        return creds

    def _save_credentials(self, creds: Credentials) -> None:
        if not self.token_file:
            return
        directory = os.path.dirname(self.token_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.token_file, "w") as f:
            f.write(creds.to_json())

    def request_access(self) -> bool:
        """
        Make sure usable credentials exist.

        Uses the stored token when possible and falls back to the interactive
        OAuth flow when a client secrets file is configured.
        """
        with self._lock:
            try:
                creds = self._load_credentials()
            except AccessDeniedError:
                if not self.client_secrets_file or not os.path.exists(self.client_secrets_file):
                    raise
                logger.info("Starting Google OAuth flow for calendar access")
                try:
                    flow = InstalledAppFlow.from_client_secrets_file(self.client_secrets_file, SCOPES)
                    creds = flow.run_local_server(port=0)
                except Exception as e:
                    raise AccessDeniedError(f"Google authorization failed: {e}") from e
                self._save_credentials(creds)

            self.credentials = creds
            self._service = None
            return True

    def list_calendars(self) -> list[CalendarInfo]:
        """List all calendars the user has access to."""
        try:
            with self._lock:
                result = self.service.calendarList().list().execute()
        except HttpError as e:
            if e.resp.status == 401:
                raise AccessDeniedError(f"Google rejected the credentials: {e}") from e
            raise CalendarBackendError(f"Failed to list calendars: {e}") from e

        return [
            CalendarInfo(
                id=item["id"],
                title=item.get("summaryOverride") or item.get("summary", ""),
                source="Google Calendar",
                is_writable=item.get("accessRole") in _WRITABLE_ROLES,
                color=item.get("backgroundColor"),
            )
            for item in result.get("items", [])
        ]

    def list_writable_calendars(self) -> list[CalendarInfo]:
        return [c for c in self.list_calendars() if c.is_writable]

    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]:
        """List event occurrences of a calendar within a time range."""
        request_params = {
            "calendarId": calendar_id,
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": True,
            "maxResults": 2500,
        }

        events: list[Event] = []
        page_token = None

        with self._lock:
            try:
                while True:
                    if page_token:
                        request_params["pageToken"] = page_token

                    result = self.service.events().list(**request_params).execute()
                    for item in result.get("items", []):
                        if item.get("status") == "cancelled":
                            continue
                        events.append(event_from_google(calendar_id, item))

                    page_token = result.get("nextPageToken")
                    if not page_token:
                        break
            except HttpError as e:
                if e.resp.status == 404:
                    raise CalendarNotFoundError(calendar_id) from e
                if e.resp.status == 401:
                    raise AccessDeniedError(f"Google rejected the credentials: {e}") from e
                raise CalendarBackendError(f"Failed to list events for {calendar_id}: {e}") from e

            # Replace this calendar's entries with the fresh listing
            self._known_events = {
                event_id: event
                for event_id, event in self._known_events.items()
                if event.calendar_id != calendar_id
            }
            self._known_events.update((event.id, event) for event in events)

        return events

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        all_day: bool = False,
        notes: Optional[str] = None,
        availability: Optional[Availability] = None,
    ) -> Event:
        """Create a private event, tagged as ours."""
        private_props = {self.settings.calendar_sync_tag: "true"}
        if availability is not None:
            private_props[AVAILABILITY_PROPERTY] = str(int(availability))

        body = {
            "summary": title,
            "description": notes or "",
            "visibility": "private",
            "transparency": "transparent" if availability == Availability.FREE else "opaque",
            "extendedProperties": {"private": private_props},
            **_event_times(start, end, all_day),
        }

        with self._lock:
            try:
                result = self.service.events().insert(
                    calendarId=calendar_id,
                    body=body,
                    sendUpdates="none",
                ).execute()
            except HttpError as e:
                if e.resp.status == 404:
                    raise CalendarNotFoundError(calendar_id) from e
                if e.resp.status == 403:
                    raise CalendarReadOnlyError(calendar_id) from e
                if e.resp.status == 401:
                    raise AccessDeniedError(f"Google rejected the credentials: {e}") from e
                raise SaveFailedError(e) from e

            event = event_from_google(calendar_id, result)
            self._known_events[event.id] = event
        return event

    def update_event(
        self,
        event_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        notes: Optional[str] = None,
        availability: Optional[Availability] = None,
    ) -> Event:
        """Patch the given fields of a known event."""
        with self._lock:
            existing = self._known_events.get(event_id)
            if existing is None:
                raise EventNotFoundError(event_id)

            patch: dict = {}
            times = _event_times(start or existing.start, end or existing.end, existing.all_day)
            if start is not None:
                patch["start"] = times["start"]
            if end is not None:
                patch["end"] = times["end"]
            if notes is not None:
                patch["description"] = notes
            if availability is not None:
                patch["transparency"] = "transparent" if availability == Availability.FREE else "opaque"
                patch["extendedProperties"] = {
                    "private": {AVAILABILITY_PROPERTY: str(int(availability))}
                }

            try:
                result = self.service.events().patch(
                    calendarId=existing.calendar_id,
                    eventId=event_id,
                    body=patch,
                    sendUpdates="none",
                ).execute()
            except HttpError as e:
                if e.resp.status in (404, 410):
                    self._known_events.pop(event_id, None)
                    raise EventNotFoundError(event_id) from e
                if e.resp.status == 401:
                    raise AccessDeniedError(f"Google rejected the credentials: {e}") from e
                raise SaveFailedError(e) from e

            event = event_from_google(existing.calendar_id, result)
            self._known_events[event.id] = event
        return event

    def delete_event(self, event_id: str) -> bool:
        """Delete an event. Returns False if it was already gone."""
        with self._lock:
            existing = self._known_events.get(event_id)
            if existing is None:
                return False

            try:
                self.service.events().delete(
                    calendarId=existing.calendar_id,
                    eventId=event_id,
                    sendUpdates="none",
                ).execute()
                self._known_events.pop(event_id, None)
                return True
            except HttpError as e:
                if e.resp.status in (404, 410):
                    # Already deleted
                    self._known_events.pop(event_id, None)
                    return False
                if e.resp.status == 401:
                    raise AccessDeniedError(f"Google rejected the credentials: {e}") from e
                raise DeleteFailedError(e) from e


@lru_cache()
def get_calendar_backend() -> GoogleCalendarBackend:
    """Get the process-wide calendar backend."""
    settings = get_settings()
    return GoogleCalendarBackend(
        token_file=settings.google_token_file,
        client_secrets_file=settings.google_client_secrets_file,
    )
