# backend/valuation/routes/inventory.py
"""
Inventory mutation and inspection routes.

Every POST maps onto one service call (inventory_service, or sales_service
for swaps), which runs as one atomic unit (record + movement + events).
Rejections (insufficient stock, bad cost, frozen record, bad input) are
400; a ledger mismatch found by reconcile is 409; anything unexpected is
logged and answered with 500.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- since filtering is inclusive: occurred_at >= since.
"""
from flask import Blueprint, current_app, request
from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text

from valuation.time_utils import parse_iso_datetime
from ..validation import (
    PayloadPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_restock,
    enforce_rules_sale,
    enforce_rules_refund,
    enforce_rules_removal,
    enforce_rules_swap,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

_COMMON_FIELDS = {
    "store_id": Integer(),
    "product_id": Integer(),
    "occurred_at": DateTime(),
    "reference_id": String(64),
    "actor_id": Integer(),
}

RESTOCK_POLICY = PayloadPolicy(
    field_types={**_COMMON_FIELDS, "quantity": Integer(), "unit_cost": Numeric(), "note": Text()},
    required={"store_id", "product_id", "quantity", "unit_cost"},
    nullable={"occurred_at", "reference_id", "actor_id", "note"},
)

SALE_POLICY = PayloadPolicy(
    field_types={**_COMMON_FIELDS, "quantity": Integer(), "unit_price": Numeric()},
    required={"store_id", "product_id", "quantity"},
    nullable={"occurred_at", "reference_id", "actor_id", "unit_price"},
)

REFUND_POLICY = PayloadPolicy(
    field_types={
        **_COMMON_FIELDS,
        "quantity": Integer(),
        "original_unit_cost": Numeric(),
        "original_item_id": Integer(),
        "unit_price": Numeric(),
        "discard": Boolean(),
    },
    required={"store_id", "product_id", "quantity"},
    nullable={"occurred_at", "reference_id", "actor_id", "original_unit_cost", "original_item_id", "unit_price"},
)

REMOVAL_POLICY = PayloadPolicy(
    field_types={
        **_COMMON_FIELDS,
        "quantity": Integer(),
        "reason": String(32),
        "loss_amount": Numeric(),
        "note": Text(),
    },
    required={"store_id", "product_id", "quantity", "reason"},
    nullable={"occurred_at", "reference_id", "actor_id", "loss_amount", "note"},
)

ADJUST_POLICY = PayloadPolicy(
    field_types={**_COMMON_FIELDS, "quantity_delta": Integer(), "reason": String(32), "note": Text()},
    required={"store_id", "product_id", "quantity_delta"},
    nullable={"occurred_at", "reference_id", "actor_id", "note"},
)

SWAP_POLICY = PayloadPolicy(
    field_types={
        "original_transaction_id": Integer(),
        "original_item_id": Integer(),
        "quantity": Integer(),
        "issued_product_id": Integer(),
        "issued_quantity": Integer(),
        "unit_price": Numeric(),
        "occurred_at": DateTime(),
        "actor_id": Integer(),
    },
    required={"original_transaction_id", "original_item_id", "quantity", "issued_product_id"},
    nullable={"issued_quantity", "unit_price", "occurred_at", "actor_id"},
)


def _validated(policy: PayloadPolicy, rules=None) -> dict:
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=policy)
    if rules is not None:
        rules(patch)
    return patch


def _applied_response(applied, store_id: int, product_id: int):
    from ..services.inventory_service import get_inventory_summary

    summary = get_inventory_summary(store_id=store_id, product_id=product_id)
    status = 201 if applied.movement_id is not None else 200
    return {"movement": applied.to_dict(), "summary": summary}, status


@inventory_bp.post("/restock")
def restock_route():
    """Receive stock at a unit cost."""
    try:
        patch = _validated(RESTOCK_POLICY, enforce_rules_restock)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import record_restock

    try:
        applied = record_restock(
            store_id=patch["store_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            unit_cost=patch["unit_cost"],
            reference_id=patch.get("reference_id"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
            note=patch.get("note"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to record restock")
        return {"error": "Internal server error"}, 500

    return _applied_response(applied, patch["store_id"], patch["product_id"])


@inventory_bp.post("/sale")
def sale_route():
    """
    Record a sale (inventory decrement) at the current average cost.

    The response's movement.unit_cost is the cost basis to store on the
    caller's transaction item.
    """
    try:
        patch = _validated(SALE_POLICY, enforce_rules_sale)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import record_sale

    try:
        applied = record_sale(
            store_id=patch["store_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            unit_price=patch.get("unit_price"),
            reference_id=patch.get("reference_id"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return {"error": "Internal server error"}, 500

    return _applied_response(applied, patch["store_id"], patch["product_id"])


@inventory_bp.post("/refund")
def refund_route():
    """Return refunded units at the original sale's unit cost."""
    try:
        patch = _validated(REFUND_POLICY, enforce_rules_refund)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import record_refund

    try:
        applied = record_refund(
            store_id=patch["store_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            original_unit_cost=patch.get("original_unit_cost"),
            original_item_id=patch.get("original_item_id"),
            unit_price=patch.get("unit_price"),
            discard=bool(patch.get("discard", False)),
            reference_id=patch.get("reference_id"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to record refund")
        return {"error": "Internal server error"}, 500

    return _applied_response(applied, patch["store_id"], patch["product_id"])


@inventory_bp.post("/removal")
def removal_route():
    """Write off damaged, expired or missing units."""
    try:
        patch = _validated(REMOVAL_POLICY, enforce_rules_removal)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import record_removal

    try:
        applied = record_removal(
            store_id=patch["store_id"],
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            reason=patch["reason"],
            loss_amount=patch.get("loss_amount"),
            reference_id=patch.get("reference_id"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
            note=patch.get("note"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to record removal")
        return {"error": "Internal server error"}, 500

    return _applied_response(applied, patch["store_id"], patch["product_id"])


@inventory_bp.post("/adjust")
def adjust_route():
    """Count correction at the current average cost."""
    try:
        patch = _validated(ADJUST_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import record_adjustment

    try:
        applied = record_adjustment(
            store_id=patch["store_id"],
            product_id=patch["product_id"],
            quantity_delta=patch["quantity_delta"],
            reason=patch.get("reason") or "count_correction",
            reference_id=patch.get("reference_id"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
            note=patch.get("note"),
        )
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to record adjustment")
        return {"error": "Internal server error"}, 500

    return _applied_response(applied, patch["store_id"], patch["product_id"])


@inventory_bp.post("/swap")
def swap_route():
    """
    Exchange units of a completed sale for another product.

    Posts a SWAP_REFUND and a SWAP_SALE transaction so the exchange reaches
    profitability reporting.
    """
    try:
        patch = _validated(SWAP_POLICY, enforce_rules_swap)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.sales_service import SaleError, post_swap

    try:
        swap_refund, swap_sale = post_swap(
            patch["original_transaction_id"],
            original_item_id=patch["original_item_id"],
            quantity=patch["quantity"],
            issued_product_id=patch["issued_product_id"],
            issued_quantity=patch.get("issued_quantity"),
            unit_price=patch.get("unit_price"),
            actor_id=patch.get("actor_id"),
            occurred_at=patch.get("occurred_at"),
        )
    except SaleError as e:
        return {"error": str(e), "details": e.details}, 400
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to post swap")
        return {"error": "Internal server error"}, 500

    return {"swap_refund": swap_refund.to_dict(), "swap_sale": swap_sale.to_dict()}, 201


@inventory_bp.get("/<int:product_id>/summary")
def inventory_summary_route(product_id: int):
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        return {"error": "store_id is required"}, 400

    from ..services.inventory_service import get_inventory_summary

    try:
        return get_inventory_summary(store_id=store_id, product_id=product_id), 200
    except ValueError as e:
        return {"error": str(e)}, 400


@inventory_bp.get("/<int:product_id>/movements")
def inventory_movements_route(product_id: int):
    """List stock movements for a product, oldest first."""
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        return {"error": "store_id is required"}, 400

    since_raw = request.args.get("since")  # optional ISO string
    try:
        since_dt = parse_iso_datetime(since_raw)
    except ValueError:
        return {"error": "since must be an ISO-8601 datetime"}, 400

    limit = request.args.get("limit", default=500, type=int)
    if limit <= 0:
        return {"error": "limit must be positive"}, 400

    from ..services.ledger_service import list_movements_since

    rows = list_movements_since(store_id, since_dt, product_id=product_id, limit=limit)
    return {"movements": [r.to_dict() for r in rows]}, 200


@inventory_bp.post("/<int:product_id>/reconcile")
def reconcile_route(product_id: int):
    """
    Replay the ledger for one record.

    A mismatch freezes the record and answers 409.
    """
    store_id = request.args.get("store_id", type=int)
    if store_id is None:
        return {"error": "store_id is required"}, 400

    from ..services.ledger_service import InconsistentLedgerError, reconcile

    try:
        result = reconcile(store_id, product_id)
    except InconsistentLedgerError as e:
        current_app.logger.error("Reconcile failed for store %s product %s: %s", store_id, product_id, e)
        return {"error": str(e), "store_id": e.store_id, "product_id": e.product_id}, 409

    return result.to_dict(), 200
