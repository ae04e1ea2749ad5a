"""Incremental provider sync: cursors, metrics and the job driver."""

from .cursor import SyncCursorState, SyncCursorStore, get_cursor, update_cursor
from .metrics import SyncMetrics
from .runner import (
    ResolveRequest,
    ReviewTaskRequest,
    SyncJob,
    SyncPage,
    SyncRunResult,
    SyncRunner,
    SyncSequenceResult,
    order_jobs,
    run_sync_job,
    run_sync_sequence,
)

__all__ = [
    "ResolveRequest",
    "ReviewTaskRequest",
    "SyncCursorState",
    "SyncCursorStore",
    "SyncJob",
    "SyncMetrics",
    "SyncPage",
    "SyncRunResult",
    "SyncRunner",
    "SyncSequenceResult",
    "get_cursor",
    "order_jobs",
    "run_sync_job",
    "run_sync_sequence",
    "update_cursor",
]
