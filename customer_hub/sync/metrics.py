"""Per-run outcome counters for sync jobs."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app

from config.monitoring import IdentityMonitoring


@dataclass
class SyncMetrics:
    """
    Counts for one sync run (or one page of it).

    Each run owns its own instance; pages are folded into the run total with
    :meth:`absorb`.
    """

    fetched: int = 0
    created: int = 0
    updated: int = 0
    linked: int = 0
    unlinked: int = 0
    ambiguous: int = 0
    errors: int = 0

    def record(self, action: str) -> None:
        if action not in {"created", "updated", "linked", "unlinked", "ambiguous"}:
            raise ValueError(f"Unknown sync outcome: {action}")
        setattr(self, action, getattr(self, action) + 1)

    @property
    def succeeded(self) -> int:
        return self.fetched - self.errors

    def absorb(self, other: "SyncMetrics") -> None:
        for key, value in other.to_dict().items():
            setattr(self, key, getattr(self, key) + value)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def report_batch(source_type: str, metrics: SyncMetrics, *, duration_seconds: float, page_number: int) -> None:
    """Send one page's counts to the application log and prometheus."""

    counts = metrics.to_dict()
    summary = ", ".join(f"{key}={value}" for key, value in counts.items())
    log = current_app.logger.warning if metrics.ambiguous or metrics.errors else current_app.logger.info
    log(f"Sync {source_type} page {page_number}: {summary} ({duration_seconds:.2f}s)")
    if metrics.ambiguous:
        log(f"Sync {source_type}: {metrics.ambiguous} ambiguous identities need review")
    IdentityMonitoring.record_sync_batch(
        source=source_type,
        counts={key: value for key, value in counts.items() if key != "fetched"},
        duration_seconds=duration_seconds,
    )


__all__ = ["SyncMetrics", "report_batch"]
