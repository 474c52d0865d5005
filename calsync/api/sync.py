"""Sync status and control API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from calsync.config import get_settings, get_sync_calendar_ids, is_sync_configured
from calsync.database import get_last_sync_run, get_sync_log
from calsync.sync.backend import AccessDeniedError, CalendarBackend
from calsync.sync.engine import is_sync_running, trigger_sync
from calsync.sync.google_calendar import get_calendar_backend
from calsync.sync.models import SyncSummary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    action: str
    status: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    error_count: int = 0
    details: Optional[str] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


class SyncStatusResponse(BaseModel):
    """Current sync configuration and last run."""
    calendar_ids: list[str]
    is_configured: bool
    sync_running: bool
    sync_interval_minutes: int
    sync_days_ahead: int
    placeholder_title: str
    last_run: Optional[SyncLogEntry] = None


class SyncResultResponse(BaseModel):
    """Outcome of one sync direction."""
    source_id: str
    target_id: str
    created: int
    updated: int
    deleted: int
    errors: list[str]


class SyncSummaryResponse(BaseModel):
    """Outcome of a sync run."""
    dry_run: bool
    start_time: str
    end_time: str
    duration_seconds: float
    total_created: int
    total_updated: int
    total_deleted: int
    errors: list[str]
    results: list[SyncResultResponse]


def _summary_response(summary: SyncSummary) -> SyncSummaryResponse:
    return SyncSummaryResponse(
        dry_run=summary.dry_run,
        start_time=summary.start_time.isoformat(),
        end_time=summary.end_time.isoformat(),
        duration_seconds=summary.duration,
        total_created=summary.total_created,
        total_updated=summary.total_updated,
        total_deleted=summary.total_deleted,
        errors=summary.all_errors,
        results=[SyncResultResponse(**r.model_dump()) for r in summary.results],
    )


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status():
    """Get sync configuration and the most recent run."""
    settings = get_settings()
    calendar_ids = get_sync_calendar_ids()
    last_run = await get_last_sync_run()

    return SyncStatusResponse(
        calendar_ids=calendar_ids,
        is_configured=is_sync_configured(),
        sync_running=is_sync_running(),
        sync_interval_minutes=settings.sync_interval_minutes,
        sync_days_ahead=settings.sync_days_ahead,
        placeholder_title=settings.placeholder_title,
        last_run=SyncLogEntry(**last_run) if last_run else None,
    )


@router.get("/log", response_model=SyncLogResponse)
async def get_sync_history(page: int = 1, page_size: int = 50):
    """Get sync run history, newest first."""
    if page < 1 or page_size < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="page and page_size must be positive",
        )

    rows, total = await get_sync_log(page=page, page_size=page_size)

    return SyncLogResponse(
        entries=[SyncLogEntry(**row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/run", response_model=SyncSummaryResponse)
async def run_sync_now(
    dry_run: bool = False,
    backend: CalendarBackend = Depends(get_calendar_backend),
):
    """Run a sync pass now. With dry_run, only report what would change."""
    settings = get_settings()
    calendar_ids = get_sync_calendar_ids()

    if not is_sync_configured():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At least {settings.min_calendars_required} calendars must be configured",
        )

    try:
        summary = await trigger_sync(
            backend,
            calendar_ids,
            dry_run=dry_run,
            placeholder_title=settings.placeholder_title,
            days_ahead=settings.sync_days_ahead,
        )
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync is already in progress",
        )

    return _summary_response(summary)
