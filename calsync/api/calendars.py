"""Calendar listing API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from calsync.config import get_sync_calendar_ids
from calsync.sync.backend import AccessDeniedError, CalendarBackend, CalendarBackendError
from calsync.sync.google_calendar import get_calendar_backend

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendars", tags=["calendars"])


class CalendarResponse(BaseModel):
    """Calendar response model."""
    id: str
    title: str
    source: Optional[str] = None
    is_writable: bool = True
    color: Optional[str] = None
    is_selected: bool = False


@router.get("", response_model=list[CalendarResponse])
async def list_calendars(
    writable_only: bool = False,
    backend: CalendarBackend = Depends(get_calendar_backend),
):
    """List calendars available to sync, marking the configured ones."""
    try:
        if writable_only:
            calendars = backend.list_writable_calendars()
        else:
            calendars = backend.list_calendars()
    except AccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except CalendarBackendError as e:
        logger.error(f"Failed to list calendars: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Calendar backend unavailable",
        )

    selected = set(get_sync_calendar_ids())
    return [
        CalendarResponse(**calendar.model_dump(), is_selected=calendar.id in selected)
        for calendar in calendars
    ]
