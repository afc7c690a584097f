# Overview: Restocking priority, stale inventory and stock-level recommendations derived from profitability.

from __future__ import annotations

import math
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import InventoryRecord, Product, StockMovement
from ..money import decimal_str, quantize_money, quantize_ratio
from valuation.time_utils import normalize_datetime, utcnow, to_utc_z
from .costing import ACTION_SALE
from .profitability_service import (
    ProductProfitability,
    _ensure_store,
    _resolve_period,
    compute_product_profitability,
    get_product_profitability,
)
from .reporting_service import ReportError


def restock_recommendation(row: ProductProfitability) -> str:
    if row.current_quantity == 0:
        return "URGENT: Item out of stock - restock immediately"
    if row.days_to_stockout is not None and row.days_to_stockout <= 3:
        return "URGENT: Restock immediately to avoid stockout"
    if row.days_to_stockout is not None and row.days_to_stockout <= 7:
        return "Restock within this week"
    if row.profit_margin > Decimal("0.3") and row.sale_velocity > 1:
        return "High-profit fast mover - prioritize restocking"
    return "Restock before stockout"


def _profitability_rows(store_id: int, period_days: int) -> tuple[list[ProductProfitability], str]:
    rows = get_product_profitability(store_id, period_days)
    if rows:
        return rows, "snapshot"
    # Nothing persisted yet; compute without writing
    return compute_product_profitability(store_id, period_days), "computed"


def get_restocking_priority(
    store_id: int,
    limit: int = 20,
    period_days: int | None = None,
    horizon_days: int | None = None,
) -> dict:
    """
    Rank products about to run out by profit contribution per day.

    Only products that sold in the window (velocity > 0) and will stock out
    within horizon_days are ranked. Ties break on the nearer stockout.
    """
    period_days = _resolve_period(period_days)
    if horizon_days is None:
        horizon_days = current_app.config.get("RESTOCK_HORIZON_DAYS", 14)
    if limit <= 0:
        raise ReportError("limit must be positive")
    if horizon_days <= 0:
        raise ReportError("horizon_days must be positive")

    rows, basis = _profitability_rows(store_id, period_days)

    candidates = []
    for row in rows:
        if row.sale_velocity <= 0 or row.days_to_stockout is None:
            continue
        if row.days_to_stockout >= horizon_days:
            continue
        contribution = row.avg_profit_per_unit * row.sale_velocity
        candidates.append((contribution, row))

    candidates.sort(key=lambda c: (-c[0], c[1].days_to_stockout, c[1].product_id))

    items = []
    for contribution, row in candidates[:limit]:
        item = row.to_dict()
        item["profit_per_day"] = decimal_str(quantize_ratio(contribution))
        item["recommendation"] = restock_recommendation(row)
        items.append(item)

    return {
        "store_id": store_id,
        "period_days": period_days,
        "horizon_days": horizon_days,
        "basis": basis,
        "items": items,
    }


def get_stale_inventory(store_id: int, period_days: int | None = None, as_of=None) -> list[dict]:
    """Stock on hand with no sale in the last period_days (or never sold)."""
    period_days = _resolve_period(period_days)
    _ensure_store(store_id)
    as_of_dt = normalize_datetime(as_of) or utcnow()
    cutoff = as_of_dt - timedelta(days=period_days)
    minor_units = current_app.config.get("CURRENCY_MINOR_UNITS", 2)

    last_sale = db.session.query(
        StockMovement.product_id,
        func.max(StockMovement.occurred_at).label("last_sold_at"),
    ).filter(
        StockMovement.store_id == store_id,
        StockMovement.action_type == ACTION_SALE,
        StockMovement.occurred_at <= as_of_dt,
    ).group_by(StockMovement.product_id).subquery()

    rows = db.session.query(InventoryRecord, Product, last_sale.c.last_sold_at).join(
        Product, Product.id == InventoryRecord.product_id
    ).outerjoin(
        last_sale, last_sale.c.product_id == InventoryRecord.product_id
    ).filter(
        InventoryRecord.store_id == store_id,
        InventoryRecord.quantity > 0,
    ).order_by(InventoryRecord.total_cost_value.desc(), Product.id.asc()).all()

    stale = []
    for record, product, last_sold_at in rows:
        last_sold_dt = normalize_datetime(last_sold_at) if last_sold_at is not None else None
        if last_sold_dt is not None and last_sold_dt >= cutoff:
            continue
        stale.append(
            {
                "product_id": product.id,
                "sku": product.sku,
                "name": product.name,
                "quantity": record.quantity,
                "inventory_value": decimal_str(quantize_money(Decimal(record.total_cost_value or 0), minor_units)),
                "last_sold_at": to_utc_z(last_sold_dt),
                "days_since_last_sale": (as_of_dt - last_sold_dt).days if last_sold_dt else None,
            }
        )
    return stale


def recommend_stock_levels(store_id: int, period_days: int | None = None) -> list[dict]:
    """
    Suggest min/max levels from sales velocity.

    min covers a week of sales (at least 5), max a month (at least min + 10).
    Only levels more than 30% off the configured ones are reported.
    """
    period_days = _resolve_period(period_days)
    rows, _ = _profitability_rows(store_id, period_days)
    by_product = {row.product_id: row for row in rows}
    if not by_product:
        return []

    records = db.session.query(InventoryRecord).filter(
        InventoryRecord.store_id == store_id,
        InventoryRecord.product_id.in_(list(by_product)),
    ).all()

    recommendations = []
    for record in records:
        row = by_product[record.product_id]
        velocity = row.sale_velocity
        current_min = record.min_stock_level or 0
        current_max = record.max_stock_level if record.max_stock_level is not None else 100

        recommended_min = max(5, math.ceil(velocity * 7))
        recommended_max = max(recommended_min + 10, math.ceil(velocity * 30))

        min_diff = Decimal(abs(recommended_min - current_min)) / max(current_min, 1)
        max_diff = Decimal(abs(recommended_max - current_max)) / max(current_max, 1)
        if min_diff <= Decimal("0.3") and max_diff <= Decimal("0.3"):
            continue

        confidence = Decimal("0.6")
        if velocity > 2:
            confidence += Decimal("0.2")
        if row.units_sold > 50:
            confidence += Decimal("0.1")

        if recommended_min > current_min and recommended_max > current_max:
            reasoning = f"Sales velocity of {velocity:.1f} units/day over {period_days} days suggests raising stock levels"
        elif recommended_min < current_min and recommended_max < current_max:
            reasoning = f"Sales velocity of {velocity:.1f} units/day suggests current stock levels tie up capital"
        else:
            reasoning = f"Adjust stock levels to match sales velocity of {velocity:.1f} units/day"

        recommendations.append(
            {
                "product_id": record.product_id,
                "product_name": row.product_name,
                "current_min_stock": current_min,
                "current_max_stock": current_max,
                "recommended_min_stock": recommended_min,
                "recommended_max_stock": recommended_max,
                "reasoning": reasoning,
                "confidence": decimal_str(min(Decimal("1"), confidence)),
            }
        )

    recommendations.sort(key=lambda r: (-Decimal(r["confidence"]), r["product_id"]))
    return recommendations
