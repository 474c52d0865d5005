"""Data types shared by the sync engine and calendar backends."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Availability(IntEnum):
    """Availability classification of an event."""
    BUSY = 0
    FREE = 1
    TENTATIVE = 2
    UNAVAILABLE = 3  # Out of office


class ParticipantStatus(IntEnum):
    """The calendar owner's own response to an event."""
    PENDING = 1
    ACCEPTED = 2
    DECLINED = 3
    TENTATIVE = 4


class ChangeType(str, Enum):
    """Kind of sync action."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CalendarInfo(BaseModel):
    """Calendar metadata."""
    id: str
    title: str
    source: Optional[str] = None
    is_writable: bool = True
    color: Optional[str] = None


class Event(BaseModel):
    """Read-only snapshot of a calendar event."""

    model_config = ConfigDict(frozen=True)

    id: str
    calendar_id: str
    title: str = ""
    start: datetime
    end: datetime
    all_day: bool = False
    notes: Optional[str] = None
    location: Optional[str] = None
    availability: Optional[Availability] = None
    participant_status: Optional[ParticipantStatus] = None
    last_modified: Optional[datetime] = None


class TrackingRecord(BaseModel):
    """Provenance stored in a placeholder's notes field.

    Field aliases are the on-wire keys of the marker format.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tracking_id: str = Field(alias="tid")
    source_event_id: str = Field(alias="src")
    source_calendar_id: str = Field(alias="scal")
    source_hash: str = Field(alias="hash")
    source_start: Optional[str] = Field(default=None, alias="sstart")


class SyncAction(BaseModel):
    """A single create, update or delete to apply to a target calendar."""
    action_type: ChangeType
    source_event: Optional[Event] = None
    target_event: Optional[Event] = None
    reason: str = ""


class SyncResult(BaseModel):
    """Outcome of one sync direction (or of orphan cleanup)."""
    source_id: str = ""
    target_id: str = ""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def total_actions(self) -> int:
        return self.created + self.updated + self.deleted

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class SyncSummary(BaseModel):
    """Aggregated outcome of a full sync run."""
    results: list[SyncResult] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime = Field(default_factory=datetime.now)
    dry_run: bool = False

    @property
    def total_created(self) -> int:
        return sum(r.created for r in self.results)

    @property
    def total_updated(self) -> int:
        return sum(r.updated for r in self.results)

    @property
    def total_deleted(self) -> int:
        return sum(r.deleted for r in self.results)

    @property
    def total_actions(self) -> int:
        return self.total_created + self.total_updated + self.total_deleted

    @property
    def all_errors(self) -> list[str]:
        return [error for r in self.results for error in r.errors]

    @property
    def has_errors(self) -> bool:
        return bool(self.all_errors)

    @property
    def duration(self) -> float:
        """Run duration in seconds."""
        return (self.end_time - self.start_time).total_seconds()
