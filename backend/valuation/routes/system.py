# backend/valuation/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the latest batch runs so a
scheduler can tell whether profitability snapshots are fresh.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func
from ..extensions import db
from ..models import BatchRun, InventoryRecord, Store
from ..models.analytics import BATCH_STATUS_FAILED
from valuation.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        frozen_count = db.session.query(InventoryRecord).filter(InventoryRecord.is_frozen.is_(True)).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "frozen_records": frozen_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_batch_health() -> dict:
    try:
        last_run = db.session.query(func.max(BatchRun.completed_at)).scalar()
        failed = db.session.query(BatchRun).filter(BatchRun.status == BATCH_STATUS_FAILED).count()
        return {
            "status": "healthy",
            "last_completed_at": to_utc_z(last_run),
            "failed_runs": failed,
        }
    except Exception:
        current_app.logger.exception("Batch health check failed")
        return {"status": "unhealthy", "error": "Database error"}


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    batch = check_batch_health()
    healthy = database["status"] == "healthy" and batch["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database, "batch": batch},
    }, 200 if healthy else 503
