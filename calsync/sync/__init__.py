"""Sync engine module."""

from calsync.sync.engine import (
    is_sync_running,
    run_sync,
    trigger_sync,
)
from calsync.sync.rules import compute_sync_actions, should_sync_event

__all__ = [
    "is_sync_running",
    "run_sync",
    "trigger_sync",
    "compute_sync_actions",
    "should_sync_event",
]
