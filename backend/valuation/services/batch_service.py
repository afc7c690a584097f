# Overview: Per-store profitability batch runs on a bounded worker pool, tracked in batch_runs.

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import BatchRun, Store
from ..models.analytics import (
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_PENDING,
    BATCH_STATUS_RUNNING,
)
from valuation.time_utils import utcnow
from .concurrency import lock_for_update
from .profitability_service import (
    ComputationTimeout,
    _resolve_period,
    compute_product_profitability,
    save_profitability_snapshots,
)
"""
Batch Run Semantics (authoritative)

- One profitability job per store; stores run in parallel on a bounded
  ThreadPoolExecutor, each worker inside its own app context (and so its
  own DB session).
- A store never runs concurrently with itself: a pending/running run newer
  than the timeout blocks a new claim (BatchRunFailure, recorded as a
  failed run). Older ones are considered abandoned and marked failed.
- All reads are bounded by the run's start time.
- Snapshots and the run's completion commit together. A failure or timeout
  rolls back every snapshot write; the run is then marked failed with its
  error. Other stores are unaffected.
"""


JOB_TYPE_PROFITABILITY = "profitability"
ACTIVE_STATUSES = (BATCH_STATUS_PENDING, BATCH_STATUS_RUNNING)


class BatchRunFailure(Exception):
    """A store's batch run could not start or did not finish."""

    def __init__(self, store_id: int, message: str):
        super().__init__(message)
        self.store_id = store_id


@dataclass(frozen=True)
class BatchRunResult:
    store_id: int
    run_id: int | None
    status: str
    snapshots_written: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == BATCH_STATUS_COMPLETED

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "run_id": self.run_id,
            "status": self.status,
            "snapshots_written": self.snapshots_written,
            "error": self.error,
        }


def _timeout_seconds(timeout_seconds: int | None) -> int:
    if timeout_seconds is None:
        timeout_seconds = current_app.config.get("BATCH_TIMEOUT_SECONDS", 300)
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")
    return timeout_seconds


def _record_failure(store_id: int, period_days: int, message: str) -> BatchRun:
    now = utcnow()
    run = BatchRun(
        store_id=store_id,
        job_type=JOB_TYPE_PROFITABILITY,
        period_days=period_days,
        status=BATCH_STATUS_FAILED,
        error_message=message,
        started_at=now,
        completed_at=now,
    )
    db.session.add(run)
    db.session.commit()
    return run


def _claim_run(store_id: int, period_days: int, timeout_seconds: int) -> BatchRun:
    """Create this store's pending run, or raise if one is already active."""
    store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
    if store is None:
        db.session.rollback()
        raise BatchRunFailure(store_id, "Store not found")

    stale_before = utcnow() - timedelta(seconds=timeout_seconds)
    active = db.session.query(BatchRun).filter(
        BatchRun.store_id == store_id,
        BatchRun.job_type == JOB_TYPE_PROFITABILITY,
        BatchRun.status.in_(ACTIVE_STATUSES),
    ).all()
    for existing in active:
        started = existing.started_at or existing.created_at
        if started is not None and started >= stale_before:
            db.session.rollback()
            raise BatchRunFailure(store_id, f"batch run {existing.id} is already {existing.status}")
        existing.status = BATCH_STATUS_FAILED
        existing.error_message = "abandoned: exceeded timeout without finishing"
        existing.completed_at = utcnow()
        current_app.logger.warning("Marking abandoned batch run %s for store %s as failed", existing.id, store_id)

    run = BatchRun(
        store_id=store_id,
        job_type=JOB_TYPE_PROFITABILITY,
        period_days=period_days,
        status=BATCH_STATUS_PENDING,
        started_at=utcnow(),
    )
    db.session.add(run)
    db.session.commit()
    return run


def run_store_profitability_job(
    store_id: int,
    period_days: int | None = None,
    timeout_seconds: int | None = None,
) -> BatchRunResult:
    """
    Recompute and persist one store's profitability snapshots.

    Never raises for job failures; the outcome is in the returned result and
    the batch_runs row.
    """
    period_days = _resolve_period(period_days)
    timeout_seconds = _timeout_seconds(timeout_seconds)
    if db.session.get(Store, store_id) is None:
        current_app.logger.warning("Skipping profitability run for unknown store %s", store_id)
        return BatchRunResult(store_id=store_id, run_id=None, status=BATCH_STATUS_FAILED, error="Store not found")

    try:
        run = _claim_run(store_id, period_days, timeout_seconds)
    except BatchRunFailure as exc:
        current_app.logger.warning("Skipping profitability run for store %s: %s", store_id, exc)
        failed = _record_failure(store_id, period_days, str(exc))
        return BatchRunResult(store_id=store_id, run_id=failed.id, status=BATCH_STATUS_FAILED, error=str(exc))

    run_id = run.id
    as_of = run.started_at
    deadline = time.monotonic() + timeout_seconds
    run.status = BATCH_STATUS_RUNNING
    db.session.commit()
    current_app.logger.info(
        "Profitability run %s started for store %s (period %s days)", run_id, store_id, period_days
    )

    try:
        rows = compute_product_profitability(store_id, period_days, as_of=as_of, deadline=deadline)
        if time.monotonic() > deadline:
            raise ComputationTimeout(f"profitability for store {store_id} timed out before saving")
        written = save_profitability_snapshots(store_id, period_days, rows, computed_at=as_of, commit=False)

        run = db.session.get(BatchRun, run_id)
        run.status = BATCH_STATUS_COMPLETED
        run.snapshots_written = written
        run.completed_at = utcnow()
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, ComputationTimeout):
            current_app.logger.error("Profitability run %s for store %s timed out: %s", run_id, store_id, message)
        else:
            current_app.logger.exception("Profitability run %s for store %s failed", run_id, store_id)
        run = db.session.get(BatchRun, run_id)
        run.status = BATCH_STATUS_FAILED
        run.error_message = message
        run.completed_at = utcnow()
        db.session.commit()
        return BatchRunResult(store_id=store_id, run_id=run_id, status=BATCH_STATUS_FAILED, error=message)

    current_app.logger.info(
        "Profitability run %s completed for store %s: %s snapshots", run_id, store_id, written
    )
    return BatchRunResult(
        store_id=store_id,
        run_id=run_id,
        status=BATCH_STATUS_COMPLETED,
        snapshots_written=written,
    )


def run_profitability_batch(
    store_ids: list[int] | None = None,
    period_days: int | None = None,
    max_workers: int | None = None,
    timeout_seconds: int | None = None,
) -> list[BatchRunResult]:
    """Run the profitability job for each store (default: all active stores)."""
    period_days = _resolve_period(period_days)
    timeout_seconds = _timeout_seconds(timeout_seconds)
    if max_workers is None:
        max_workers = current_app.config.get("BATCH_MAX_WORKERS", 4)
    if max_workers <= 0:
        raise ValueError("max_workers must be positive")

    if store_ids is None:
        store_ids = [
            s.id for s in db.session.query(Store).filter(Store.is_active.is_(True)).order_by(Store.id.asc()).all()
        ]
    store_ids = list(dict.fromkeys(store_ids))
    if not store_ids:
        return []

    current_app.logger.info(
        "Starting profitability batch for %s store(s) with %s worker(s)", len(store_ids), max_workers
    )

    if max_workers == 1 or len(store_ids) == 1:
        results = [run_store_profitability_job(sid, period_days, timeout_seconds) for sid in store_ids]
    else:
        app = current_app._get_current_object()

        def _worker(sid: int) -> BatchRunResult:
            with app.app_context():
                return run_store_profitability_job(sid, period_days, timeout_seconds)

        results = []
        with ThreadPoolExecutor(max_workers=min(max_workers, len(store_ids))) as pool:
            futures = {pool.submit(_worker, sid): sid for sid in store_ids}
            for future in as_completed(futures):
                sid = futures[future]
                try:
                    results.append(future.result())
                except Exception as exc:
                    current_app.logger.exception("Profitability worker for store %s crashed", sid)
                    results.append(
                        BatchRunResult(store_id=sid, run_id=None, status=BATCH_STATUS_FAILED, error=str(exc))
                    )
        results.sort(key=lambda r: r.store_id)

    failed = [r for r in results if not r.ok]
    current_app.logger.info(
        "Profitability batch finished: %s completed, %s failed", len(results) - len(failed), len(failed)
    )
    return results


def list_batch_runs(store_id: int | None = None, *, status: str | None = None, limit: int = 50) -> list[BatchRun]:
    query = db.session.query(BatchRun)
    if store_id is not None:
        query = query.filter(BatchRun.store_id == store_id)
    if status is not None:
        query = query.filter(BatchRun.status == status)
    return query.order_by(BatchRun.id.desc()).limit(limit).all()
