"""Calendar backend protocol and error types."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from calsync.sync.models import Availability, CalendarInfo, Event


class CalendarBackendError(Exception):
    """Base class for calendar backend failures."""


class AccessDeniedError(CalendarBackendError):
    """Calendar access was denied or is restricted."""

    def __init__(self, message: str = "Calendar access denied"):
        super().__init__(message)


class CalendarNotFoundError(CalendarBackendError):
    """The calendar id is unknown to the backend."""

    def __init__(self, calendar_id: str):
        self.calendar_id = calendar_id
        super().__init__(f"Calendar not found: {calendar_id}")


class CalendarReadOnlyError(CalendarBackendError):
    """The calendar does not allow content modifications."""

    def __init__(self, calendar_name: str):
        self.calendar_name = calendar_name
        super().__init__(f"Calendar is read-only: {calendar_name}")


class EventNotFoundError(CalendarBackendError):
    """The event id is unknown to the backend."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class SaveFailedError(CalendarBackendError):
    """Creating or updating an event failed."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Save failed: {cause if cause is not None else 'unknown error'}")


class DeleteFailedError(CalendarBackendError):
    """Deleting an event failed."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Delete failed: {cause if cause is not None else 'unknown error'}")


@runtime_checkable
class CalendarBackend(Protocol):
    """Protocol that all calendar backends must satisfy."""

    def request_access(self) -> bool: ...

    def list_calendars(self) -> list[CalendarInfo]: ...

    def list_writable_calendars(self) -> list[CalendarInfo]: ...

    def get_events(self, calendar_id: str, start: datetime, end: datetime) -> list[Event]: ...

    def create_event(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        all_day: bool = False,
        notes: Optional[str] = None,
        availability: Optional[Availability] = None,
    ) -> Event: ...

    def update_event(
        self,
        event_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        notes: Optional[str] = None,
        availability: Optional[Availability] = None,
    ) -> Event: ...

    def delete_event(self, event_id: str) -> bool: ...
