from flask import Blueprint, current_app, jsonify, request

from valuation.services import profitability_service, reporting_service, restocking_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/profitability")
def profitability_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    period_days = request.args.get(
        "period_days", default=current_app.config.get("PROFITABILITY_PERIOD_DAYS", 30), type=int
    )
    limit = request.args.get("limit", type=int)

    try:
        rows = profitability_service.get_product_profitability(store_id, period_days, limit=limit)
        return jsonify({
            "store_id": store_id,
            "period_days": period_days,
            "computed_at": profitability_service.get_snapshot_computed_at(store_id, period_days),
            "rows": [r.to_dict() for r in rows],
        }), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/removal-patterns")
def removal_patterns_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    period_days = request.args.get("period_days", type=int)

    try:
        patterns = profitability_service.detect_removal_patterns(store_id, period_days)
        return jsonify({"store_id": store_id, "patterns": patterns}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/restocking")
def restocking_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    limit = request.args.get("limit", default=20, type=int)
    period_days = request.args.get("period_days", type=int)
    horizon_days = request.args.get("horizon_days", type=int)

    try:
        report = restocking_service.get_restocking_priority(
            store_id,
            limit=limit,
            period_days=period_days,
            horizon_days=horizon_days,
        )
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/stock-levels")
def stock_levels_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    period_days = request.args.get("period_days", type=int)

    try:
        rows = restocking_service.recommend_stock_levels(store_id, period_days)
        return jsonify({"store_id": store_id, "recommendations": rows}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/stale")
def stale_inventory_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    period_days = request.args.get("period_days", type=int)

    try:
        rows = restocking_service.get_stale_inventory(store_id, period_days)
        return jsonify({"store_id": store_id, "items": rows}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/inventory-value")
def inventory_value_report():
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    include_empty = request.args.get("include_empty", "false").lower() == "true"

    try:
        report = reporting_service.get_inventory_value(store_id=store_id, include_empty=include_empty)
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/cost-history/<int:product_id>")
def cost_history_report(product_id: int):
    store_id = request.args.get("store_id", type=int)
    if not store_id:
        return jsonify({"error": "store_id is required"}), 400

    limit = request.args.get("limit", default=100, type=int)

    try:
        report = reporting_service.get_cost_history(store_id=store_id, product_id=product_id, limit=limit)
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
