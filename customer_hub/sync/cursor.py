"""
Per-source checkpoints for incremental syncs.

The cursor always advances to the position the caller reports, even when the
batch had failing records; ``last_success_at`` only moves on clean batches so
operators can tell "running" from "running cleanly".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from customer_hub.models import SyncCursor, db
from customer_hub.models.base import utc_now
from customer_hub.utils.db import upsert_insert


@dataclass(frozen=True)
class SyncCursorState:
    source_type: str
    cursor_value: dict[str, Any] | None
    last_success_at: datetime | None
    last_error: str | None
    items_synced: int
    updated_at: datetime | None


class SyncCursorStore:
    """Read and upsert ``sync_cursors`` rows. Writes flush; callers commit with their batch."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def _load(self, source_type: str) -> SyncCursor | None:
        return self.session.scalars(
            select(SyncCursor)
            .where(SyncCursor.source_type == source_type)
            .execution_options(populate_existing=True)
        ).first()

    def get_cursor(self, source_type: str) -> dict[str, Any] | None:
        row = self._load(source_type)
        return row.cursor_value if row is not None else None

    def get_state(self, source_type: str) -> SyncCursorState | None:
        row = self._load(source_type)
        if row is None:
            return None
        return SyncCursorState(
            source_type=row.source_type,
            cursor_value=row.cursor_value,
            last_success_at=row.last_success_at,
            last_error=row.last_error,
            items_synced=row.items_synced or 0,
            updated_at=row.updated_at,
        )

    def update_cursor(
        self,
        source_type: str,
        value: dict[str, Any] | None,
        items_synced_delta: int = 0,
        error: str | None = None,
    ) -> None:
        """
        Upsert the cursor for ``source_type``.

        ``items_synced`` is incremented by ``items_synced_delta``. When ``error``
        is given it is stored and ``last_success_at`` keeps its previous value;
        otherwise ``last_success_at`` becomes now and ``last_error`` is cleared.
        """

        if not source_type:
            raise ValueError("source_type is required")
        if items_synced_delta < 0:
            raise ValueError("items_synced_delta cannot be negative")

        now = utc_now()
        stmt = upsert_insert(self.session, SyncCursor).values(
            source_type=source_type,
            cursor_value=value,
            items_synced=items_synced_delta,
            last_error=error,
            last_success_at=None if error else now,
            created_at=now,
            updated_at=now,
        )
        changes = {
            "cursor_value": stmt.excluded.cursor_value,
            "items_synced": SyncCursor.items_synced + stmt.excluded.items_synced,
            "last_error": stmt.excluded.last_error,
            "updated_at": stmt.excluded.updated_at,
        }
        if error is None:
            changes["last_success_at"] = stmt.excluded.last_success_at
        self.session.execute(stmt.on_conflict_do_update(index_elements=["source_type"], set_=changes))

    def reset_cursor(self, source_type: str) -> bool:
        """Forget the stored position (history counters are kept). Returns False if no row exists."""

        result = self.session.execute(
            update(SyncCursor)
            .where(SyncCursor.source_type == source_type)
            .values(cursor_value=None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)


def get_cursor(source_type: str, *, session: Session | None = None) -> dict[str, Any] | None:
    return SyncCursorStore(session).get_cursor(source_type)


def update_cursor(
    source_type: str,
    value: dict[str, Any] | None,
    items_synced_delta: int = 0,
    error: str | None = None,
    *,
    session: Session | None = None,
) -> None:
    SyncCursorStore(session).update_cursor(source_type, value, items_synced_delta, error)


__all__ = ["SyncCursorState", "SyncCursorStore", "get_cursor", "update_cursor"]
