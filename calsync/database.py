"""Database connection and sync history storage."""

import asyncio
import json
import logging
from typing import Optional

import aiosqlite

from calsync.config import get_settings
from calsync.sync.models import SyncSummary

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- One row per sync run
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TIMESTAMP,
    finished_at TIMESTAMP,
    created INTEGER DEFAULT 0,
    updated INTEGER DEFAULT 0,
    deleted INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_created ON sync_log(created_at);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


def _summary_status(summary: SyncSummary) -> str:
    if not summary.has_errors:
        return "success"
    # Every direction failed outright
    if summary.total_actions == 0 and all(r.has_errors for r in summary.results):
        return "failure"
    return "partial"


async def log_sync_summary(summary: SyncSummary) -> int:
    """Store the outcome of a sync run. Returns the log entry id."""
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO sync_log
           (action, status, started_at, finished_at, created, updated, deleted,
            error_count, details)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
           RETURNING id""",
        (
            "dry_run" if summary.dry_run else "sync",
            _summary_status(summary),
            summary.start_time.isoformat(),
            summary.end_time.isoformat(),
            summary.total_created,
            summary.total_updated,
            summary.total_deleted,
            len(summary.all_errors),
            json.dumps({"results": [r.model_dump() for r in summary.results]}),
        ),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def log_sync_failure(error: str, dry_run: bool = False) -> int:
    """Store a run that aborted before producing a summary."""
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO sync_log (action, status, error_count, details)
           VALUES (?, 'failure', 1, ?)
           RETURNING id""",
        ("dry_run" if dry_run else "sync", json.dumps({"error": error})),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def get_sync_log(page: int = 1, page_size: int = 50) -> tuple[list[dict], int]:
    """Get a page of sync history, newest first, and the total entry count."""
    db = await get_database()

    cursor = await db.execute("SELECT COUNT(*) FROM sync_log")
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        "SELECT * FROM sync_log ORDER BY id DESC LIMIT ? OFFSET ?",
        (page_size, (page - 1) * page_size),
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows], total


async def get_last_sync_run() -> Optional[dict]:
    """Get the most recent sync log entry."""
    db = await get_database()
    cursor = await db.execute("SELECT * FROM sync_log ORDER BY id DESC LIMIT 1")
    row = await cursor.fetchone()
    if row:
        return dict(row)
    return None
