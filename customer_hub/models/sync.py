"""Persistent checkpoints for incremental provider syncs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class SyncCursor(BaseModel):
    """Track how far each source's incremental sync has progressed."""

    __tablename__ = "sync_cursors"

    source_type: Mapped[str] = mapped_column(db.String(100), primary_key=True)
    cursor_value: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Source-specific position (page token, last processed id, updated-at watermark).",
    )
    last_success_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    items_synced: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SyncCursor {self.source_type} items={self.items_synced}>"
