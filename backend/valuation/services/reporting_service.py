# Overview: Read-only reporting over inventory records and cost events.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import (
    InventoryCostLayer,
    InventoryRecord,
    InventoryRevaluationEvent,
    PriceChangeEvent,
    Product,
    Store,
)
from ..money import ZERO, decimal_str, quantize_money
from valuation.time_utils import utcnow, to_utc_z


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _ensure_store(store_id: int) -> Store:
    store = db.session.query(Store).filter_by(id=store_id).first()
    if not store:
        raise ReportError("Store not found")
    return store


def get_inventory_value(*, store_id: int, include_empty: bool = False) -> dict:
    """Carrying value of a store's stock at weighted-average cost."""
    _ensure_store(store_id)
    minor_units = current_app.config.get("CURRENCY_MINOR_UNITS", 2)

    query = db.session.query(InventoryRecord, Product).join(
        Product, Product.id == InventoryRecord.product_id
    ).filter(InventoryRecord.store_id == store_id)
    if not include_empty:
        query = query.filter(InventoryRecord.quantity > 0)

    rows = []
    total_value = ZERO
    total_units = 0
    for record, product in query.order_by(Product.name.asc()).all():
        value = Decimal(record.total_cost_value or 0)
        total_value += value
        total_units += record.quantity
        rows.append(
            {
                "product_id": product.id,
                "sku": product.sku,
                "name": product.name,
                "quantity": record.quantity,
                "avg_cost": decimal_str(record.avg_cost),
                "inventory_value": decimal_str(quantize_money(value, minor_units)),
                "is_frozen": record.is_frozen,
            }
        )

    return {
        "store_id": store_id,
        "as_of": to_utc_z(utcnow()),
        "total_units": total_units,
        "total_value": decimal_str(quantize_money(total_value, minor_units)),
        "rows": rows,
    }


def get_cost_history(*, store_id: int, product_id: int, limit: int = 100) -> dict:
    """
    Cost-affecting history for one product, newest first.

    Merges price changes, revaluations and received cost layers into one
    timeline.
    """
    _ensure_store(store_id)
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise ReportError("Product not found")
    if limit <= 0:
        raise ReportError("limit must be positive")

    entries = []
    price_changes = db.session.query(PriceChangeEvent).filter_by(
        store_id=store_id, product_id=product_id
    ).order_by(PriceChangeEvent.occurred_at.desc()).limit(limit).all()
    for event in price_changes:
        entries.append(("price_change", event.occurred_at, event.id, event.to_dict()))

    revaluations = db.session.query(InventoryRevaluationEvent).filter_by(
        store_id=store_id, product_id=product_id
    ).order_by(InventoryRevaluationEvent.occurred_at.desc()).limit(limit).all()
    for event in revaluations:
        entries.append(("revaluation", event.occurred_at, event.id, event.to_dict()))

    layers = db.session.query(InventoryCostLayer).filter_by(
        store_id=store_id, product_id=product_id
    ).order_by(InventoryCostLayer.created_at.desc()).limit(limit).all()
    for layer in layers:
        entries.append(("cost_layer", layer.created_at, layer.id, layer.to_dict()))

    entries.sort(key=lambda e: (e[1], e[2]), reverse=True)
    record = db.session.query(InventoryRecord).filter_by(store_id=store_id, product_id=product_id).first()

    return {
        "store_id": store_id,
        "product_id": product_id,
        "sku": product.sku,
        "avg_cost": decimal_str(record.avg_cost) if record else None,
        "quantity": record.quantity if record else 0,
        "entries": [
            {"type": kind, "occurred_at": to_utc_z(when), "data": data}
            for kind, when, _, data in entries[:limit]
        ],
    }
