# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/valuation/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    InventoryCostLayer,
    InventoryRecord,
    InventoryRevaluationEvent,
    PriceChangeEvent,
    Product,
    Store,
    TransactionItem,
)
from ..money import ZERO, decimal_str, quantize_cost, quantize_money, to_decimal
from valuation.time_utils import normalize_datetime, utcnow, to_utc_z
from . import costing, ledger_service
from .costing import (
    ACTION_ADJUSTMENT,
    ACTION_DAMAGE_REMOVAL,
    ACTION_EXPIRY_REMOVAL,
    ACTION_REFUND,
    ACTION_RESTOCK,
    ACTION_SALE,
    ACTION_SWAP,
    CostThresholds,
    InventoryError,
    InventoryState,
    InsufficientStockError,
    InvalidCostError,
    Movement,
    PriceChange,
    Revaluation,
)
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Record Store Invariants & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- occurred_at may be given as datetime or ISO-8601 string; it may not be
  more than two minutes in the future.

Inventory model:
- InventoryRecord holds quantity, avg_cost and total_cost_value per
  (store, product). It is created on first stock receipt.
- Every mutation runs as one atomic unit: lock the record row, run the
  costing engine, write the record, append exactly one StockMovement and
  any PriceChange / Revaluation events, then commit. Contention is retried
  with backoff (run_with_retry).
- Rejected mutations (insufficient stock, bad cost, frozen record) write
  nothing.
- delta = 0 is a no-op: no record, no movement, no event.

Cost basis capture:
- record_sale returns the avg cost it consumed; callers persist it on
  their transaction item.
- record_refund restores cost at the ORIGINAL sale unit cost. Precedence:
  original transaction item -> explicit original_unit_cost -> store average.
"""


# Removal reason -> movement action type. All are loss-type write-offs.
REMOVAL_REASONS = {
    "damaged": ACTION_DAMAGE_REMOVAL,
    "expired": ACTION_EXPIRY_REMOVAL,
    "theft": ACTION_ADJUSTMENT,
    "shrinkage": ACTION_ADJUSTMENT,
    "other": ACTION_DAMAGE_REMOVAL,
}

REMOVAL_SOURCE_PREFIX = "stock_removal_"
RETURN_DISCARD_SOURCE = "return_discard"


class FrozenRecordError(InventoryError):
    """The record failed reconciliation and rejects writes until unfrozen."""


@dataclass(frozen=True)
class AppliedMovement:
    """Outcome of one request-path mutation."""
    movement_id: int | None
    store_id: int
    product_id: int
    action_type: str
    quantity_before: int
    quantity_after: int
    unit_cost: Decimal | None
    total_cost: Decimal
    avg_cost_after: Decimal
    total_cost_value_after: Decimal
    price_change_event_id: int | None = None
    revaluation_event_id: int | None = None

    @property
    def delta(self) -> int:
        return self.quantity_after - self.quantity_before

    def to_dict(self) -> dict:
        return {
            "movement_id": self.movement_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "action_type": self.action_type,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "delta": self.delta,
            "unit_cost": decimal_str(self.unit_cost),
            "total_cost": decimal_str(self.total_cost),
            "avg_cost_after": decimal_str(self.avg_cost_after),
            "total_cost_value_after": decimal_str(self.total_cost_value_after),
            "price_change_event_id": self.price_change_event_id,
            "revaluation_event_id": self.revaluation_event_id,
        }


def _thresholds() -> CostThresholds:
    return CostThresholds(
        absolute=Decimal(str(current_app.config.get("PRICE_CHANGE_ABS_THRESHOLD", "0.01"))),
        relative=Decimal(str(current_app.config.get("PRICE_CHANGE_REL_THRESHOLD", "0.005"))),
    )


def _minor_units() -> int:
    return current_app.config.get("CURRENCY_MINOR_UNITS", 2)


def _parse_occurred_at(value) -> datetime:
    occurred_dt = normalize_datetime(value) if value is not None else utcnow()
    if occurred_dt > utcnow() + timedelta(minutes=2):
        raise ValueError("occurred_at cannot be in the future")
    return occurred_dt


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError("quantity must be an integer")
    if quantity < 0:
        raise ValueError("quantity must be >= 0")
    return quantity


def _ensure_store(store_id: int) -> Store:
    store = db.session.query(Store).filter_by(id=store_id).first()
    if store is None:
        raise ValueError("store not found")
    return store


def _ensure_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ValueError("product not found")
    if require_active and not product.is_active:
        raise ValueError("product is inactive")
    return product


def _load_record(store_id: int, product_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(store_id=store_id, product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _state_of(record: InventoryRecord | None) -> InventoryState:
    if record is None:
        return InventoryState.empty()
    return InventoryState(
        quantity=record.quantity,
        avg_cost=Decimal(record.avg_cost or 0),
        total_cost_value=Decimal(record.total_cost_value or 0),
    )


def _persist_price_change(
    event: PriceChange,
    *,
    store_id: int,
    product_id: int,
    movement_id: int,
    source: str | None,
    reference_id: str | None,
    actor_id: int | None,
    occurred_at: datetime,
) -> PriceChangeEvent:
    row = PriceChangeEvent(
        store_id=store_id,
        product_id=product_id,
        actor_id=actor_id,
        source=source,
        reference_id=reference_id,
        old_cost=quantize_cost(event.old_cost),
        new_cost=quantize_cost(event.new_cost),
        meta={
            "trigger": event.trigger,
            "movementId": movement_id,
            "newAverageCost": decimal_str(quantize_cost(event.new_avg_cost)),
        },
        occurred_at=occurred_at,
    )
    db.session.add(row)
    return row


def _persist_revaluation(
    event: Revaluation,
    *,
    store_id: int,
    product_id: int,
    movement_id: int,
    source: str | None,
    reference_id: str | None,
    actor_id: int | None,
    occurred_at: datetime,
    metadata: dict,
) -> InventoryRevaluationEvent:
    meta = dict(metadata)
    meta["reason"] = event.reason
    if event.loss_amount is not None:
        meta["lossAmount"] = decimal_str(quantize_money(event.loss_amount, _minor_units()))
    row = InventoryRevaluationEvent(
        store_id=store_id,
        product_id=product_id,
        movement_id=movement_id,
        actor_id=actor_id,
        source=source,
        reference_id=reference_id,
        quantity_before=event.quantity_before,
        quantity_after=event.quantity_after,
        revalued_quantity=event.revalued_quantity,
        avg_cost_before=quantize_cost(event.avg_cost_before),
        avg_cost_after=quantize_cost(event.avg_cost_after),
        total_cost_before=quantize_cost(event.total_cost_before),
        total_cost_after=quantize_cost(event.total_cost_after),
        delta_value=quantize_cost(event.delta_value),
        meta=meta,
        occurred_at=occurred_at,
    )
    db.session.add(row)
    return row


def _apply_movement_inner(
    *,
    store_id: int,
    product_id: int,
    movement: Movement,
    source: str | None,
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_dt: datetime,
    metadata: dict | None = None,
) -> AppliedMovement | None:
    """Core mutation without retry or commit. Caller holds the transaction.

    Costing runs before anything is written, so a rejected movement leaves
    no trace.
    """
    if movement.delta == 0:
        return None

    record = _load_record(store_id, product_id, lock=True)
    if record is not None and record.is_frozen:
        raise FrozenRecordError(
            f"inventory record for store {store_id} product {product_id} is frozen: {record.frozen_reason}"
        )

    before = _state_of(record)
    result = costing.apply_movement(before, movement, _thresholds())
    if result.is_noop:
        return None
    after = costing.quantize_state(result.state)
    if not costing.is_cost_value_consistent(after, _minor_units()):
        current_app.logger.error(
            "Cost value drift for store %s product %s: total %s, quantity %s, avg %s",
            store_id,
            product_id,
            after.total_cost_value,
            after.quantity,
            after.avg_cost,
        )

    if record is None:
        record = InventoryRecord(store_id=store_id, product_id=product_id, quantity=0, avg_cost=ZERO, total_cost_value=ZERO)
        db.session.add(record)

    record.quantity = after.quantity
    record.avg_cost = after.avg_cost
    record.total_cost_value = after.total_cost_value
    if movement.action_type == ACTION_RESTOCK or after.avg_cost != before.avg_cost:
        record.last_cost_update = occurred_dt
    if movement.action_type == ACTION_RESTOCK:
        record.last_restocked_at = occurred_dt

    unit_cost = quantize_cost(result.unit_cost) if result.unit_cost is not None else None
    meta = dict(metadata or {})
    if movement.reason:
        meta.setdefault("reason", movement.reason)
    if result.absorbed_value:
        meta["absorbedCostValue"] = decimal_str(quantize_cost(result.absorbed_value))

    movement_id = ledger_service.record_movement(
        store_id=store_id,
        product_id=product_id,
        quantity_before=before.quantity,
        quantity_after=after.quantity,
        action_type=movement.action_type,
        source=source,
        reference_id=reference_id,
        unit_cost=unit_cost,
        metadata=meta,
        actor_id=actor_id,
        occurred_at=occurred_dt,
    )

    price_change_row = None
    revaluation_row = None
    event_kwargs = dict(
        store_id=store_id,
        product_id=product_id,
        movement_id=movement_id,
        source=source,
        reference_id=reference_id,
        actor_id=actor_id,
        occurred_at=occurred_dt,
    )
    for event in result.events:
        if isinstance(event, PriceChange):
            price_change_row = _persist_price_change(event, **event_kwargs)
        elif isinstance(event, Revaluation):
            revaluation_row = _persist_revaluation(event, metadata=meta, **event_kwargs)

    if movement.action_type == ACTION_RESTOCK:
        db.session.add(
            InventoryCostLayer(
                store_id=store_id,
                product_id=product_id,
                movement_id=movement_id,
                quantity_received=movement.delta,
                unit_cost=unit_cost,
                source=source,
                reference_id=reference_id,
                created_at=occurred_dt,
            )
        )

    db.session.flush()

    moved = abs(after.quantity - before.quantity)
    return AppliedMovement(
        movement_id=movement_id,
        store_id=store_id,
        product_id=product_id,
        action_type=movement.action_type,
        quantity_before=before.quantity,
        quantity_after=after.quantity,
        unit_cost=unit_cost,
        total_cost=quantize_cost((unit_cost or ZERO) * moved),
        avg_cost_after=after.avg_cost,
        total_cost_value_after=after.total_cost_value,
        price_change_event_id=price_change_row.id if price_change_row is not None else None,
        revaluation_event_id=revaluation_row.id if revaluation_row is not None else None,
    )


def _run_mutation(op, *, commit: bool):
    """
    Run op() as one atomic unit.

    With commit=False the caller owns the transaction (and its retry), so
    op() only flushes and errors propagate untouched.
    """
    if not commit:
        applied = op()
        db.session.flush()
        return applied

    def _op():
        try:
            applied = op()
        except ValueError:
            db.session.rollback()
            raise
        db.session.commit()
        return applied

    # IntegrityError: two first receipts raced on the unique (store, product) key
    return run_with_retry(_op, extra_exceptions=(IntegrityError,))


def _noop(store_id: int, product_id: int, action_type: str) -> AppliedMovement:
    state = _state_of(_load_record(store_id, product_id))
    return AppliedMovement(
        movement_id=None,
        store_id=store_id,
        product_id=product_id,
        action_type=action_type,
        quantity_before=state.quantity,
        quantity_after=state.quantity,
        unit_cost=None,
        total_cost=ZERO,
        avg_cost_after=state.avg_cost,
        total_cost_value_after=state.total_cost_value,
    )


def record_restock(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    unit_cost,
    source: str = "restock",
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    note: str | None = None,
    commit: bool = True,
) -> AppliedMovement:
    """
    Receive stock at unit_cost and fold it into the weighted average.

    Writes an audit cost layer, and a PriceChangeEvent when unit_cost differs
    materially from the prior average.
    """
    quantity = _require_positive_quantity(quantity)
    if unit_cost is None:
        raise InvalidCostError("unit_cost is required for restock")
    unit_cost = to_decimal(unit_cost, field="unit_cost")

    def _op():
        _ensure_store(store_id)
        _ensure_product(product_id, require_active=True)
        applied = _apply_movement_inner(
            store_id=store_id,
            product_id=product_id,
            movement=Movement(action_type=ACTION_RESTOCK, delta=quantity, unit_cost=unit_cost),
            source=source,
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=_parse_occurred_at(occurred_at),
            metadata={"note": note} if note else None,
        )
        return applied or _noop(store_id, product_id, ACTION_RESTOCK)

    return _run_mutation(_op, commit=commit)


def record_sale(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    unit_price=None,
    source: str = "pos_sale",
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> AppliedMovement:
    """
    Consume stock at the current average cost.

    The returned unit_cost is the cost basis used; the caller must persist
    it on its transaction item so a later refund can reverse it exactly.
    """
    quantity = _require_positive_quantity(quantity)
    metadata = {}
    if unit_price is not None:
        metadata["unitPrice"] = decimal_str(to_decimal(unit_price, field="unit_price"))

    def _op():
        _ensure_store(store_id)
        _ensure_product(product_id)
        applied = _apply_movement_inner(
            store_id=store_id,
            product_id=product_id,
            movement=Movement(action_type=ACTION_SALE, delta=-quantity),
            source=source,
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=_parse_occurred_at(occurred_at),
            metadata=metadata,
        )
        return applied or _noop(store_id, product_id, ACTION_SALE)

    return _run_mutation(_op, commit=commit)


def resolve_refund_unit_cost(
    store_id: int,
    product_id: int,
    *,
    original_item_id: int | None = None,
    original_unit_cost=None,
) -> tuple[Decimal, str]:
    """
    Pick the cost basis a refund restores.

    Returns (unit_cost, basis) where basis names the source used.
    """
    if original_item_id is not None:
        item = db.session.query(TransactionItem).filter_by(id=original_item_id).first()
        if item is not None:
            if item.product_id != product_id:
                raise ValueError("original item is for a different product")
            return Decimal(item.unit_cost or 0), "original_item"
        current_app.logger.warning(
            "Refund references missing transaction item %s; falling back", original_item_id
        )

    if original_unit_cost is not None:
        return to_decimal(original_unit_cost, field="original_unit_cost"), "original_unit_cost"

    record = _load_record(store_id, product_id)
    current_app.logger.warning(
        "Refund for store %s product %s has no original sale cost; using store average",
        store_id,
        product_id,
    )
    return (Decimal(record.avg_cost or 0) if record else ZERO), "store_average"


def record_refund(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    original_unit_cost=None,
    original_item_id: int | None = None,
    unit_price=None,
    discard: bool = False,
    source: str = "pos_refund",
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> AppliedMovement:
    """
    Return refunded units to stock at the original sale's unit cost.

    discard=True books the refund and immediately writes the units off
    (source return_discard), e.g. a returned item that cannot be resold.
    Both movements share one transaction.
    """
    quantity = _require_positive_quantity(quantity)

    def _op():
        _ensure_store(store_id)
        _ensure_product(product_id)
        occurred_dt = _parse_occurred_at(occurred_at)
        unit_cost, basis = resolve_refund_unit_cost(
            store_id,
            product_id,
            original_item_id=original_item_id,
            original_unit_cost=original_unit_cost,
        )
        metadata = {"costBasis": basis}
        if original_item_id is not None:
            metadata["originalItemId"] = original_item_id
        if unit_price is not None:
            metadata["unitPrice"] = decimal_str(to_decimal(unit_price, field="unit_price"))

        applied = _apply_movement_inner(
            store_id=store_id,
            product_id=product_id,
            movement=Movement(action_type=ACTION_REFUND, delta=quantity, unit_cost=unit_cost),
            source=source,
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=occurred_dt,
            metadata=metadata,
        )
        if applied is None:
            return _noop(store_id, product_id, ACTION_REFUND)

        if discard:
            _apply_movement_inner(
                store_id=store_id,
                product_id=product_id,
                movement=Movement(
                    action_type=ACTION_DAMAGE_REMOVAL,
                    delta=-quantity,
                    reason=RETURN_DISCARD_SOURCE,
                    loss_amount=unit_cost * quantity,
                ),
                source=RETURN_DISCARD_SOURCE,
                reference_id=reference_id,
                actor_id=actor_id,
                occurred_dt=occurred_dt,
                metadata={"refundMovementId": applied.movement_id},
            )
        return applied

    return _run_mutation(_op, commit=commit)


def record_removal(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    reason: str,
    loss_amount=None,
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    note: str | None = None,
    commit: bool = True,
) -> AppliedMovement:
    """
    Write off damaged, expired or missing units.

    Emits an InventoryRevaluationEvent with deltaValue = -(qty * avg_cost)
    and lossAmount (defaults to |deltaValue|; a caller may pass a smaller
    net loss, e.g. after a supplier credit).
    """
    quantity = _require_positive_quantity(quantity)
    reason_key = (reason or "").strip().lower()
    if reason_key not in REMOVAL_REASONS:
        raise ValueError(f"reason must be one of: {', '.join(sorted(REMOVAL_REASONS))}")
    if loss_amount is not None:
        loss_amount = to_decimal(loss_amount, field="loss_amount")

    def _op():
        _ensure_store(store_id)
        _ensure_product(product_id)
        metadata = {"note": note} if note else None
        applied = _apply_movement_inner(
            store_id=store_id,
            product_id=product_id,
            movement=Movement(
                action_type=REMOVAL_REASONS[reason_key],
                delta=-quantity,
                reason=reason_key,
                loss_amount=loss_amount,
            ),
            source=f"{REMOVAL_SOURCE_PREFIX}{reason_key}",
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=_parse_occurred_at(occurred_at),
            metadata=metadata,
        )
        return applied or _noop(store_id, product_id, REMOVAL_REASONS[reason_key])

    return _run_mutation(_op, commit=commit)


def record_adjustment(
    *,
    store_id: int,
    product_id: int,
    quantity_delta: int,
    reason: str = "count_correction",
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    note: str | None = None,
    commit: bool = True,
) -> AppliedMovement:
    """
    Correct on-hand quantity (e.g. after a physical count) at the current
    average cost. Not counted as a profitability loss.
    """
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValueError("quantity_delta must be an integer")

    def _op():
        _ensure_store(store_id)
        _ensure_product(product_id)
        applied = _apply_movement_inner(
            store_id=store_id,
            product_id=product_id,
            movement=Movement(action_type=ACTION_ADJUSTMENT, delta=quantity_delta, reason=reason),
            source="adjustment",
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=_parse_occurred_at(occurred_at),
            metadata={"note": note} if note else None,
        )
        return applied or _noop(store_id, product_id, ACTION_ADJUSTMENT)

    return _run_mutation(_op, commit=commit)


def record_swap(
    *,
    store_id: int,
    returned_product_id: int,
    returned_quantity: int,
    issued_product_id: int,
    issued_quantity: int,
    original_item_id: int | None = None,
    original_unit_cost=None,
    reference_id: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
    commit: bool = True,
) -> tuple[AppliedMovement, AppliedMovement]:
    """
    Exchange: take back one product and hand out another in one atomic unit.

    The returned leg is costed like a refund, the issued leg like a sale.
    Both movements carry action_type 'swap'.
    """
    returned_quantity = _require_positive_quantity(returned_quantity)
    issued_quantity = _require_positive_quantity(issued_quantity)

    def _op():
        _ensure_store(store_id)
        _ensure_product(returned_product_id)
        _ensure_product(issued_product_id)
        occurred_dt = _parse_occurred_at(occurred_at)
        unit_cost, basis = resolve_refund_unit_cost(
            store_id,
            returned_product_id,
            original_item_id=original_item_id,
            original_unit_cost=original_unit_cost,
        )
        returned = _apply_movement_inner(
            store_id=store_id,
            product_id=returned_product_id,
            movement=Movement(action_type=ACTION_SWAP, delta=returned_quantity, unit_cost=unit_cost),
            source="pos_swap_in",
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=occurred_dt,
            metadata={"costBasis": basis},
        ) or _noop(store_id, returned_product_id, ACTION_SWAP)
        issued = _apply_movement_inner(
            store_id=store_id,
            product_id=issued_product_id,
            movement=Movement(action_type=ACTION_SWAP, delta=-issued_quantity),
            source="pos_swap_out",
            reference_id=reference_id,
            actor_id=actor_id,
            occurred_dt=occurred_dt,
        ) or _noop(store_id, issued_product_id, ACTION_SWAP)
        return returned, issued

    return _run_mutation(_op, commit=commit)


def update_product_pricing(
    *,
    store_id: int,
    product_id: int,
    cost=None,
    sale_price=None,
    actor_id: int | None = None,
    source: str = "manual_edit",
) -> PriceChangeEvent | None:
    """
    Manual edit of a product's list cost and/or sale price.

    Records a PriceChangeEvent when anything actually changed. The running
    average cost is not touched: it only moves with stock.
    """
    new_cost = quantize_cost(to_decimal(cost, field="cost")) if cost is not None else None
    new_price = quantize_money(to_decimal(sale_price, field="sale_price"), _minor_units()) if sale_price is not None else None
    if new_cost is not None and new_cost < 0:
        raise InvalidCostError("cost must be >= 0")
    if new_price is not None and new_price < 0:
        raise ValueError("sale_price must be >= 0")

    def _op():
        _ensure_store(store_id)
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise ValueError("product not found")

        old_cost = Decimal(product.cost) if product.cost is not None else None
        old_price = Decimal(product.sale_price) if product.sale_price is not None else None
        cost_changed = new_cost is not None and new_cost != old_cost
        price_changed = new_price is not None and new_price != old_price
        if not cost_changed and not price_changed:
            return None

        if cost_changed:
            product.cost = new_cost
        if price_changed:
            product.sale_price = new_price

        event = PriceChangeEvent(
            store_id=store_id,
            product_id=product_id,
            actor_id=actor_id,
            source=source,
            old_cost=old_cost,
            new_cost=new_cost if cost_changed else old_cost,
            old_sale_price=old_price,
            new_sale_price=new_price if price_changed else old_price,
            meta={"costChanged": cost_changed, "salePriceChanged": price_changed},
            occurred_at=utcnow(),
        )
        db.session.add(event)
        db.session.commit()
        return event

    return run_with_retry(_op)


def set_stock_levels(
    *,
    store_id: int,
    product_id: int,
    min_stock_level: int | None = None,
    max_stock_level: int | None = None,
) -> InventoryRecord:
    """Update reorder thresholds. Quantity and cost are untouched."""
    if min_stock_level is not None and min_stock_level < 0:
        raise ValueError("min_stock_level must be >= 0")
    if max_stock_level is not None and max_stock_level < 0:
        raise ValueError("max_stock_level must be >= 0")

    def _op():
        record = _load_record(store_id, product_id, lock=True)
        if record is None:
            db.session.rollback()
            raise ValueError("inventory record not found")
        new_min = min_stock_level if min_stock_level is not None else record.min_stock_level
        new_max = max_stock_level if max_stock_level is not None else record.max_stock_level
        if new_max is not None and new_min is not None and new_max < new_min:
            db.session.rollback()
            raise ValueError("max_stock_level must be >= min_stock_level")
        record.min_stock_level = new_min
        record.max_stock_level = new_max
        db.session.commit()
        return record

    return run_with_retry(_op)


def get_inventory_record(store_id: int, product_id: int) -> InventoryRecord | None:
    return _load_record(store_id, product_id)


def get_inventory_summary(*, store_id: int, product_id: int) -> dict:
    _ensure_store(store_id)
    product = _ensure_product(product_id)
    record = _load_record(store_id, product_id)
    state = _state_of(record)

    return {
        "store_id": store_id,
        "product_id": product_id,
        "sku": product.sku,
        "name": product.name,
        "quantity": state.quantity,
        "avg_cost": decimal_str(state.avg_cost),
        "total_cost_value": decimal_str(state.total_cost_value),
        "cost_value_consistent": costing.is_cost_value_consistent(state, _minor_units()),
        "last_cost_update": to_utc_z(record.last_cost_update) if record else None,
        "last_restocked_at": to_utc_z(record.last_restocked_at) if record else None,
        "min_stock_level": record.min_stock_level if record else 0,
        "max_stock_level": record.max_stock_level if record else None,
        "is_frozen": record.is_frozen if record else False,
    }


__all__ = [
    "AppliedMovement",
    "FrozenRecordError",
    "InsufficientStockError",
    "InvalidCostError",
    "InventoryError",
    "REMOVAL_REASONS",
    "get_inventory_record",
    "get_inventory_summary",
    "record_adjustment",
    "record_refund",
    "record_removal",
    "record_restock",
    "record_sale",
    "record_swap",
    "resolve_refund_unit_cost",
    "set_stock_levels",
    "update_product_pricing",
]
