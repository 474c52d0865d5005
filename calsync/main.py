"""Main FastAPI application entry point."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from calsync.config import get_settings, get_sync_calendar_ids, is_sync_configured
from calsync.database import close_database, get_database
from calsync.sync.backend import AccessDeniedError
from calsync.sync.engine import is_sync_running
from calsync.sync.google_calendar import get_calendar_backend

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


async def request_calendar_access() -> bool:
    """
    Authorize the calendar backend, running the OAuth flow if needed.

    Returns False when access was not granted; syncs fail until it is.
    """
    try:
        await asyncio.to_thread(get_calendar_backend().request_access)
    except AccessDeniedError as e:
        logger.warning(f"Calendar access not granted: {e}")
        return False

    logger.info("Calendar access granted")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Starting CalSync...")
    logger.info(f"Database: {settings.database_path}")

    calendar_ids = get_sync_calendar_ids()
    if not is_sync_configured():
        logger.warning(
            f"Only {len(calendar_ids)} calendar(s) configured, "
            f"sync needs at least {settings.min_calendars_required}"
        )
    else:
        logger.info(f"Syncing {len(calendar_ids)} calendars")

    await get_database()
    logger.info("Database initialized")

    await request_calendar_access()

    # Start background scheduler
    try:
        from calsync.jobs.scheduler import setup_scheduler
        setup_scheduler()
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

    yield

    # Shutdown
    logger.info("Shutting down...")

    try:
        from calsync.jobs.scheduler import shutdown_scheduler
        shutdown_scheduler()
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")

    await close_database()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="CalSync",
    description="Mirrors busy time between calendars with opaque placeholder events",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check():
    """Report database reachability and whether a sync is in flight."""
    try:
        db = await get_database()
        await db.execute("SELECT 1")
        return {
            "status": "healthy",
            "database": "connected",
            "sync_running": is_sync_running(),
        }
    except Exception as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )


# Include routers
from calsync.api import api_router

app.include_router(api_router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    log_level = settings.log_level.lower()

    uvicorn.run(
        "calsync.main:app",
        host="0.0.0.0",
        port=3000,
        log_level=log_level,
        reload=False,
    )
