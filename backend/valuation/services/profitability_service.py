# Overview: Per-product profitability aggregation over a trailing window, and snapshot persistence.

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import (
    InventoryRecord,
    InventoryRevaluationEvent,
    Product,
    ProductProfitabilitySnapshot,
    Store,
    Transaction,
    TransactionItem,
)
from ..models.analytics import TREND_DECLINING, TREND_RISING, TREND_STABLE
from ..models.sales import REFUND_KINDS, SALE_KINDS
from ..money import ZERO, decimal_str, quantize_money, quantize_ratio, to_decimal
from valuation.time_utils import normalize_datetime, utcnow, to_utc_z
from .inventory_service import REMOVAL_SOURCE_PREFIX, RETURN_DISCARD_SOURCE
from .reporting_service import ReportError
"""
Profitability Aggregation (authoritative)

Inputs for a store and a window [as_of - period_days, as_of]:
- completed SALE items (gross revenue and cost, captured at sale time)
- completed REFUND items (refund amount, and cost basis captured from the
  original sale)
- loss-type revaluation events (source stock_removal_* or return_discard),
  valued by their lossAmount

Per product:
  net_revenue  = gross_revenue - refunded_amount
  net_cost     = gross_cost - refund cost basis
  total_profit = net_revenue - net_cost - removal_loss_value
  margin       = total_profit / net_revenue (0 when net_revenue <= 0)
  velocity     = units_sold / period_days
  days_to_stockout = floor(quantity / velocity), None when velocity ~ 0

Reads never lock and never write; only save_profitability_snapshots writes,
and it overwrites per (store, product, period_days).
"""


VELOCITY_EPSILON = Decimal("1e-9")


class ComputationTimeout(Exception):
    """The caller's deadline passed before every product was aggregated."""


@dataclass
class ProductProfitability:
    store_id: int
    product_id: int
    period_days: int
    units_sold: int = 0
    gross_revenue: Decimal = ZERO
    refunded_amount: Decimal = ZERO
    refunded_quantity: int = 0
    net_revenue: Decimal = ZERO
    gross_cost: Decimal = ZERO
    net_cost: Decimal = ZERO
    total_profit: Decimal = ZERO
    profit_margin: Decimal = ZERO
    avg_profit_per_unit: Decimal = ZERO
    sale_velocity: Decimal = ZERO
    current_quantity: int = 0
    days_to_stockout: int | None = None
    min_stock_level: int = 0
    removal_count: int = 0
    removal_loss_value: Decimal = ZERO
    trend: str = TREND_STABLE
    product_name: str | None = field(default=None, compare=False)
    sku: str | None = field(default=None, compare=False)

    @classmethod
    def from_snapshot(cls, row: ProductProfitabilitySnapshot) -> "ProductProfitability":
        values = {}
        for f in fields(cls):
            if f.name in ("product_name", "sku"):
                continue
            value = getattr(row, f.name)
            if isinstance(f.default, Decimal) and value is not None:
                value = Decimal(value)
            values[f.name] = value
        product = row.product
        return cls(
            **values,
            product_name=product.name if product else None,
            sku=product.sku if product else None,
        )

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "period_days": self.period_days,
            "units_sold": self.units_sold,
            "gross_revenue": decimal_str(self.gross_revenue),
            "refunded_amount": decimal_str(self.refunded_amount),
            "refunded_quantity": self.refunded_quantity,
            "net_revenue": decimal_str(self.net_revenue),
            "gross_cost": decimal_str(self.gross_cost),
            "net_cost": decimal_str(self.net_cost),
            "total_profit": decimal_str(self.total_profit),
            "profit_margin": decimal_str(self.profit_margin),
            "avg_profit_per_unit": decimal_str(self.avg_profit_per_unit),
            "sale_velocity": decimal_str(self.sale_velocity),
            "current_quantity": self.current_quantity,
            "days_to_stockout": self.days_to_stockout,
            "min_stock_level": self.min_stock_level,
            "removal_count": self.removal_count,
            "removal_loss_value": decimal_str(self.removal_loss_value),
            "trend": self.trend,
        }


def _resolve_period(period_days: int | None) -> int:
    if period_days is None:
        period_days = current_app.config.get("PROFITABILITY_PERIOD_DAYS", 30)
    if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days <= 0:
        raise ReportError("period_days must be a positive integer")
    return period_days


def _ensure_store(store_id: int) -> Store:
    store = db.session.query(Store).filter_by(id=store_id).first()
    if not store:
        raise ReportError("Store not found")
    return store


def _item_totals(store_id: int, kinds: tuple[str, ...], start: datetime, end: datetime, *, end_inclusive: bool = True) -> dict:
    """product_id -> (quantity, total_price, total_cost) over completed items."""
    query = db.session.query(
        TransactionItem.product_id,
        func.coalesce(func.sum(TransactionItem.quantity), 0).label("quantity"),
        func.coalesce(func.sum(TransactionItem.total_price), 0).label("total_price"),
        func.coalesce(func.sum(TransactionItem.total_cost), 0).label("total_cost"),
    ).join(Transaction, Transaction.id == TransactionItem.transaction_id).filter(
        Transaction.store_id == store_id,
        Transaction.status == "completed",
        Transaction.kind.in_(kinds),
        Transaction.created_at >= start,
    )
    if end_inclusive:
        query = query.filter(Transaction.created_at <= end)
    else:
        query = query.filter(Transaction.created_at < end)

    totals = {}
    for row in query.group_by(TransactionItem.product_id).all():
        totals[row.product_id] = (
            int(row.quantity or 0),
            Decimal(str(row.total_price or 0)),
            Decimal(str(row.total_cost or 0)),
        )
    return totals


def loss_events_query(store_id: int, start: datetime, end: datetime):
    return db.session.query(InventoryRevaluationEvent).filter(
        InventoryRevaluationEvent.store_id == store_id,
        InventoryRevaluationEvent.occurred_at >= start,
        InventoryRevaluationEvent.occurred_at <= end,
        or_(
            InventoryRevaluationEvent.source.like(f"{REMOVAL_SOURCE_PREFIX}%"),
            InventoryRevaluationEvent.source == RETURN_DISCARD_SOURCE,
        ),
    )


def event_loss_amount(event: InventoryRevaluationEvent) -> Decimal:
    meta = event.meta or {}
    raw = meta.get("lossAmount")
    if raw is None:
        return abs(Decimal(event.delta_value or 0))
    return to_decimal(raw, field="lossAmount")


def _loss_totals(store_id: int, start: datetime, end: datetime) -> dict:
    """product_id -> (event count, summed lossAmount)."""
    totals: dict[int, tuple[int, Decimal]] = {}
    for event in loss_events_query(store_id, start, end).all():
        count, value = totals.get(event.product_id, (0, ZERO))
        totals[event.product_id] = (count + 1, value + event_loss_amount(event))
    return totals


def classify_trend(current_units: int, prior_units: int, threshold: Decimal) -> str:
    if prior_units <= 0:
        return TREND_RISING if current_units > 0 else TREND_STABLE
    growth = (Decimal(current_units) - Decimal(prior_units)) / Decimal(prior_units)
    if growth > threshold:
        return TREND_RISING
    if growth < -threshold:
        return TREND_DECLINING
    return TREND_STABLE


def compute_product_profitability(
    store_id: int,
    period_days: int | None = None,
    as_of=None,
    *,
    deadline: float | None = None,
) -> list[ProductProfitability]:
    """
    Aggregate one row per product touched in the window.

    as_of bounds every read (batch jobs pass their start time). deadline is
    a time.monotonic() value checked between products.
    """
    period_days = _resolve_period(period_days)
    _ensure_store(store_id)
    as_of_dt = normalize_datetime(as_of) or utcnow()
    start = as_of_dt - timedelta(days=period_days)
    prior_start = start - timedelta(days=period_days)
    minor_units = current_app.config.get("CURRENCY_MINOR_UNITS", 2)
    trend_threshold = Decimal(str(current_app.config.get("TREND_THRESHOLD", "0.10")))

    sales = _item_totals(store_id, SALE_KINDS, start, as_of_dt)
    refunds = _item_totals(store_id, REFUND_KINDS, start, as_of_dt)
    losses = _loss_totals(store_id, start, as_of_dt)
    prior_sales = _item_totals(store_id, SALE_KINDS, prior_start, start, end_inclusive=False)

    product_ids = sorted(set(sales) | set(refunds) | set(losses))
    if not product_ids:
        return []

    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }
    records = {
        r.product_id: r
        for r in db.session.query(InventoryRecord).filter(
            InventoryRecord.store_id == store_id,
            InventoryRecord.product_id.in_(product_ids),
        ).all()
    }

    rows = []
    for product_id in product_ids:
        if deadline is not None and time.monotonic() > deadline:
            raise ComputationTimeout(
                f"profitability for store {store_id} timed out after {len(rows)} of {len(product_ids)} products"
            )

        units_sold, gross_revenue, gross_cost = sales.get(product_id, (0, ZERO, ZERO))
        refunded_quantity, refunded_amount, refund_cost = refunds.get(product_id, (0, ZERO, ZERO))
        removal_count, removal_loss = losses.get(product_id, (0, ZERO))

        net_revenue = gross_revenue - refunded_amount
        net_cost = gross_cost - refund_cost
        total_profit = net_revenue - net_cost - removal_loss

        margin = total_profit / net_revenue if net_revenue > 0 else ZERO
        net_units = units_sold - refunded_quantity
        per_unit = total_profit / net_units if net_units > 0 else ZERO

        velocity = Decimal(units_sold) / Decimal(period_days)
        record = records.get(product_id)
        quantity = record.quantity if record else 0
        days_to_stockout = math.floor(Decimal(quantity) / velocity) if velocity > VELOCITY_EPSILON else None

        product = products.get(product_id)
        rows.append(
            ProductProfitability(
                store_id=store_id,
                product_id=product_id,
                period_days=period_days,
                units_sold=units_sold,
                gross_revenue=quantize_money(gross_revenue, minor_units),
                refunded_amount=quantize_money(refunded_amount, minor_units),
                refunded_quantity=refunded_quantity,
                net_revenue=quantize_money(net_revenue, minor_units),
                gross_cost=quantize_money(gross_cost, minor_units),
                net_cost=quantize_money(net_cost, minor_units),
                total_profit=quantize_money(total_profit, minor_units),
                profit_margin=quantize_ratio(margin),
                avg_profit_per_unit=quantize_ratio(per_unit),
                sale_velocity=quantize_ratio(velocity),
                current_quantity=quantity,
                days_to_stockout=days_to_stockout,
                min_stock_level=(record.min_stock_level or 0) if record else 0,
                removal_count=removal_count,
                removal_loss_value=quantize_money(removal_loss, minor_units),
                trend=classify_trend(units_sold, prior_sales.get(product_id, (0, ZERO, ZERO))[0], trend_threshold),
                product_name=product.name if product else None,
                sku=product.sku if product else None,
            )
        )
    return rows


_SNAPSHOT_FIELDS = tuple(
    f.name for f in fields(ProductProfitability)
    if f.name not in ("store_id", "product_id", "period_days", "product_name", "sku")
)


def save_profitability_snapshots(
    store_id: int,
    period_days: int,
    rows: list[ProductProfitability],
    computed_at: datetime | None = None,
    *,
    commit: bool = True,
) -> int:
    """
    Overwrite the store's snapshots for period_days with rows.

    Products missing from rows lose their snapshot, so a rerun with no new
    activity reproduces exactly the same table.
    """
    computed_at = computed_at or utcnow()
    existing = {
        s.product_id: s
        for s in db.session.query(ProductProfitabilitySnapshot).filter_by(
            store_id=store_id, period_days=period_days
        ).all()
    }

    seen = set()
    for row in rows:
        snapshot = existing.get(row.product_id)
        if snapshot is None:
            snapshot = ProductProfitabilitySnapshot(
                store_id=store_id, product_id=row.product_id, period_days=period_days
            )
            db.session.add(snapshot)
        for name in _SNAPSHOT_FIELDS:
            setattr(snapshot, name, getattr(row, name))
        snapshot.computed_at = computed_at
        seen.add(row.product_id)

    for product_id, snapshot in existing.items():
        if product_id not in seen:
            db.session.delete(snapshot)

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return len(seen)


def get_product_profitability(
    store_id: int,
    period_days: int | None = None,
    *,
    limit: int | None = None,
) -> list[ProductProfitability]:
    """Persisted snapshots, most profitable first. Read-only."""
    period_days = _resolve_period(period_days)
    _ensure_store(store_id)
    query = db.session.query(ProductProfitabilitySnapshot).filter_by(
        store_id=store_id, period_days=period_days
    ).order_by(
        ProductProfitabilitySnapshot.total_profit.desc(),
        ProductProfitabilitySnapshot.product_id.asc(),
    )
    if limit is not None:
        query = query.limit(limit)
    return [ProductProfitability.from_snapshot(s) for s in query.all()]


def get_snapshot_computed_at(store_id: int, period_days: int) -> str | None:
    latest = db.session.query(func.max(ProductProfitabilitySnapshot.computed_at)).filter_by(
        store_id=store_id, period_days=period_days
    ).scalar()
    return to_utc_z(latest)


def detect_removal_patterns(store_id: int, period_days: int | None = None, as_of=None) -> list[dict]:
    """
    Group write-offs in the window by product and reason.

    Highest loss first, so recurring damage or shrinkage surfaces on top.
    """
    period_days = _resolve_period(period_days)
    _ensure_store(store_id)
    as_of_dt = normalize_datetime(as_of) or utcnow()
    start = as_of_dt - timedelta(days=period_days)
    minor_units = current_app.config.get("CURRENCY_MINOR_UNITS", 2)

    groups: dict[tuple[int, str], dict] = {}
    for event in loss_events_query(store_id, start, as_of_dt).all():
        reason = (event.meta or {}).get("reason") or event.source
        key = (event.product_id, reason)
        group = groups.setdefault(
            key,
            {"product_id": event.product_id, "reason": reason, "occurrences": 0, "units_lost": 0, "loss": ZERO, "last": None},
        )
        group["occurrences"] += 1
        group["units_lost"] += event.revalued_quantity or 0
        group["loss"] += event_loss_amount(event)
        if group["last"] is None or event.occurred_at > group["last"]:
            group["last"] = event.occurred_at

    if not groups:
        return []

    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_({pid for pid, _ in groups})
        ).all()
    }

    patterns = []
    for group in sorted(groups.values(), key=lambda g: (-g["loss"], g["product_id"], g["reason"])):
        product = products.get(group["product_id"])
        patterns.append(
            {
                "product_id": group["product_id"],
                "sku": product.sku if product else None,
                "product_name": product.name if product else None,
                "reason": group["reason"],
                "occurrences": group["occurrences"],
                "units_lost": group["units_lost"],
                "loss_value": decimal_str(quantize_money(group["loss"], minor_units)),
                "last_occurred_at": to_utc_z(group["last"]),
                "recurring": group["occurrences"] >= 3,
            }
        )
    return patterns
