"""
Batch job routes.

POST /api/batch/profitability runs the profitability job synchronously for
the requested stores (default: all active) and returns one result per
store. Cron normally drives the same job through `flask batch profitability`.
"""
from flask import Blueprint, jsonify, request
from sqlalchemy import Integer

from valuation.services import batch_service
from valuation.services.reporting_service import ReportError
from ..validation import PayloadPolicy, ValidationError, validate_payload


batch_bp = Blueprint("batch", __name__, url_prefix="/api/batch")

PROFITABILITY_POLICY = PayloadPolicy(
    field_types={
        "store_id": Integer(),
        "period_days": Integer(),
        "max_workers": Integer(),
        "timeout_seconds": Integer(),
    },
    nullable={"store_id", "period_days", "max_workers", "timeout_seconds"},
)


@batch_bp.post("/profitability")
def run_profitability_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(payload=payload, policy=PROFITABILITY_POLICY)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    store_ids = [patch["store_id"]] if patch.get("store_id") else None
    try:
        results = batch_service.run_profitability_batch(
            store_ids=store_ids,
            period_days=patch.get("period_days"),
            max_workers=patch.get("max_workers"),
            timeout_seconds=patch.get("timeout_seconds"),
        )
    except (ValueError, ReportError) as e:
        return jsonify({"error": str(e)}), 400

    ok = all(r.ok for r in results)
    return jsonify({"ok": ok, "results": [r.to_dict() for r in results]}), 200 if ok else 207


@batch_bp.get("/runs")
def list_runs_route():
    store_id = request.args.get("store_id", type=int)
    status = request.args.get("status")
    limit = request.args.get("limit", default=50, type=int)
    if limit <= 0:
        return jsonify({"error": "limit must be positive"}), 400

    runs = batch_service.list_batch_runs(store_id, status=status, limit=limit)
    return jsonify({"runs": [r.to_dict() for r in runs]}), 200
