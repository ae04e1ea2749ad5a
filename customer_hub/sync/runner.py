"""
Generic driver for per-provider incremental sync jobs.

A provider job supplies three callables: one that fetches a page of raw
records from the provider, one that maps a raw record to a resolver request,
and optionally one that links the job's own row (order, shipment, ticket) to
the resolved customer. The driver owns cursor handling, per-record error
isolation, metrics and review-task signalling.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from flask import current_app
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import IdentityMonitoring
from customer_hub.identity.address import AddressInput
from customer_hub.identity.resolver import IdentityInput, IdentityResolver, ResolutionResult
from customer_hub.models import db

from .cursor import SyncCursorStore
from .metrics import SyncMetrics, report_batch

CursorValue = dict[str, Any]


@dataclass(frozen=True)
class SyncPage:
    """One page of raw provider records plus the position after it."""

    records: Sequence[Any]
    next_cursor: CursorValue | None
    has_more: bool = False


@dataclass(frozen=True)
class ResolveRequest:
    identity: IdentityInput
    address: AddressInput | Mapping[str, Any] | None = None
    record_key: str | None = None


@dataclass(frozen=True)
class ReviewTaskRequest:
    """Ask the task queue for a human decision on an ambiguous record."""

    source_type: str
    record_key: str
    candidate_ids: tuple[int, ...]
    matched_by: str
    reason: str = "ambiguous_identity"


@dataclass
class SyncJob:
    source_type: str
    fetch_page: Callable[[CursorValue | None, int], SyncPage]
    to_request: Callable[[Any], ResolveRequest | None]
    link_record: Callable[[Any, ResolutionResult], None] | None = None
    on_review_needed: Callable[[ReviewTaskRequest], None] | None = None


@dataclass
class SyncRunResult:
    source_type: str
    metrics: SyncMetrics
    cursor: CursorValue | None
    pages: int = 0
    review_requests: list[ReviewTaskRequest] = field(default_factory=list)
    failed_records: list[str] = field(default_factory=list)


@dataclass
class SyncSequenceResult:
    results: dict[str, SyncRunResult] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


# Database connectivity problems abort the batch instead of being charged to one record.
_INFRASTRUCTURE_ERRORS = (OperationalError, InterfaceError)


class SyncRunner:
    def __init__(self, job: SyncJob, *, session: Session | None = None, batch_size: int | None = None):
        self.job = job
        self.session = session or db.session
        self.batch_size = batch_size or current_app.config.get("SYNC_BATCH_SIZE", 50)
        self.cursors = SyncCursorStore(self.session)
        self.resolver = IdentityResolver(self.session)

    def run(
        self,
        *,
        full_resync: bool = False,
        start_cursor: CursorValue | None = None,
        max_pages: int | None = None,
    ) -> SyncRunResult:
        source = self.job.source_type
        if start_cursor is not None:
            cursor = start_cursor
        elif full_resync:
            cursor = None
        else:
            cursor = self.cursors.get_cursor(source)

        current_app.logger.info(
            f"Starting sync {source} (full_resync={full_resync}, cursor={cursor}, batch_size={self.batch_size})"
        )
        result = SyncRunResult(source_type=source, metrics=SyncMetrics(), cursor=cursor)

        while max_pages is None or result.pages < max_pages:
            started = time.perf_counter()
            try:
                page = self.job.fetch_page(cursor, self.batch_size)
                page_metrics = self._process_page(page, result)
                if page.next_cursor is not None:
                    cursor = page.next_cursor
                self.cursors.update_cursor(
                    source,
                    cursor,
                    page_metrics.succeeded,
                    error=self._error_summary(page_metrics, result.failed_records),
                )
                self.session.commit()
            except Exception as exc:
                self.session.rollback()
                self._record_batch_failure(cursor, exc)
                raise

            result.pages += 1
            result.cursor = cursor
            result.metrics.absorb(page_metrics)
            report_batch(
                source,
                page_metrics,
                duration_seconds=time.perf_counter() - started,
                page_number=result.pages,
            )
            if not page.has_more:
                break

        current_app.logger.info(f"Finished sync {source}: {result.metrics.to_dict()} over {result.pages} page(s)")
        return result

    def _process_page(self, page: SyncPage, result: SyncRunResult) -> SyncMetrics:
        metrics = SyncMetrics()
        for index, record in enumerate(page.records):
            metrics.fetched += 1
            record_key = f"{self.job.source_type}[{index}]"
            try:
                resolution = None
                with self.session.begin_nested():
                    request = self.job.to_request(record)
                    if request is not None:
                        record_key = request.record_key or record_key
                        resolution = self.resolver.resolve(request.identity, request.address)
                        if self.job.link_record is not None:
                            self.job.link_record(record, resolution)
                # Counted only once the savepoint has been released
                if resolution is None:
                    metrics.record("unlinked")
                    continue
                metrics.record(resolution.action)
                if resolution.is_ambiguous:
                    self._request_review(record_key, resolution, result)
            except _INFRASTRUCTURE_ERRORS:
                raise
            except Exception as exc:
                metrics.errors += 1
                result.failed_records.append(record_key)
                current_app.logger.warning(f"Sync {self.job.source_type}: record {record_key} failed: {exc}")
        return metrics

    def _request_review(self, record_key: str, resolution: ResolutionResult, result: SyncRunResult) -> None:
        review = ReviewTaskRequest(
            source_type=self.job.source_type,
            record_key=record_key,
            candidate_ids=resolution.candidate_ids,
            matched_by=resolution.matched_by,
        )
        result.review_requests.append(review)
        if self.job.on_review_needed is not None:
            self.job.on_review_needed(review)

    @staticmethod
    def _error_summary(metrics: SyncMetrics, failed_records: list[str]) -> str | None:
        if not metrics.errors:
            return None
        recent = ", ".join(failed_records[-metrics.errors :][:5])
        return f"{metrics.errors} of {metrics.fetched} record(s) failed: {recent}"

    def _record_batch_failure(self, cursor: CursorValue | None, exc: Exception) -> None:
        source = self.job.source_type
        IdentityMonitoring.record_sync_failure(source=source)
        current_app.logger.error(f"Sync {source} aborted at cursor {cursor}: {exc}")
        try:
            self.cursors.update_cursor(source, cursor, 0, error=f"{type(exc).__name__}: {exc}")
            self.session.commit()
        except SQLAlchemyError as store_exc:
            self.session.rollback()
            current_app.logger.error(f"Could not record sync failure for {source}: {store_exc}")


def run_sync_job(
    job: SyncJob,
    *,
    full_resync: bool = False,
    start_cursor: CursorValue | None = None,
    max_pages: int | None = None,
    session: Session | None = None,
    batch_size: int | None = None,
) -> SyncRunResult:
    """Run one provider job until the provider reports no further pages."""

    runner = SyncRunner(job, session=session, batch_size=batch_size)
    return runner.run(full_resync=full_resync, start_cursor=start_cursor, max_pages=max_pages)


def order_jobs(jobs: Iterable[SyncJob], source_order: Sequence[str] | None = None) -> list[SyncJob]:
    """Sort jobs by the configured source authority order; unknown sources run last."""

    if source_order is None:
        source_order = current_app.config.get("SYNC_SOURCE_ORDER", ())
    rank = {source: position for position, source in enumerate(source_order)}
    return sorted(jobs, key=lambda job: rank.get(job.source_type, len(rank)))


def run_sync_sequence(jobs: Iterable[SyncJob], *, full_resync: bool = False) -> SyncSequenceResult:
    """
    Run several provider jobs one after another in authority order.

    A failing source is logged and recorded; later sources still run since
    out-of-order linking only lowers the match rate.
    """

    outcome = SyncSequenceResult()
    for job in order_jobs(jobs):
        try:
            outcome.results[job.source_type] = run_sync_job(job, full_resync=full_resync)
        except Exception as exc:
            outcome.failures[job.source_type] = f"{type(exc).__name__}: {exc}"
            current_app.logger.error(f"Sync sequence: {job.source_type} failed: {exc}")
    return outcome


__all__ = [
    "ResolveRequest",
    "ReviewTaskRequest",
    "SyncJob",
    "SyncPage",
    "SyncRunResult",
    "SyncRunner",
    "SyncSequenceResult",
    "order_jobs",
    "run_sync_job",
    "run_sync_sequence",
]
