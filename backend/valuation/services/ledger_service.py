# Overview: Append-only stock movement ledger and reconciliation against inventory records.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import InventoryRecord, StockMovement
from ..models.ledger import MOVEMENT_ACTION_TYPES
from valuation.time_utils import utcnow
from .costing import InventoryState, is_cost_value_consistent
"""
Stock Movement Ledger Invariants (authoritative)

- Append-only: this module exposes no update or delete.
- One movement per InventoryRecord mutation, written in the same DB
  transaction (record_movement only flushes; the caller commits).
- delta = quantity_after - quantity_before, and delta != 0.
- Replaying SUM(delta) from zero reproduces InventoryRecord.quantity.
- A mismatch is a data-integrity alarm: the record is frozen, never
  auto-corrected, until someone reconciles it by hand.
- occurred_at is business time; created_at is system time (DB default).
"""


class InconsistentLedgerError(Exception):
    """Replayed movements disagree with the stored inventory record."""

    def __init__(self, store_id: int, product_id: int, message: str):
        super().__init__(message)
        self.store_id = store_id
        self.product_id = product_id


@dataclass(frozen=True)
class ReconciliationResult:
    store_id: int
    product_id: int
    recorded_quantity: int
    replayed_quantity: int
    cost_value_consistent: bool

    @property
    def quantity_consistent(self) -> bool:
        return self.recorded_quantity == self.replayed_quantity

    @property
    def is_consistent(self) -> bool:
        return self.quantity_consistent and self.cost_value_consistent

    def describe(self) -> str:
        problems = []
        if not self.quantity_consistent:
            problems.append(
                f"quantity {self.recorded_quantity} != replayed {self.replayed_quantity}"
            )
        if not self.cost_value_consistent:
            problems.append("total_cost_value does not match quantity * avg_cost")
        return "; ".join(problems) or "consistent"

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "recorded_quantity": self.recorded_quantity,
            "replayed_quantity": self.replayed_quantity,
            "cost_value_consistent": self.cost_value_consistent,
            "is_consistent": self.is_consistent,
            "detail": self.describe(),
        }


def record_movement(
    *,
    store_id: int,
    product_id: int,
    quantity_before: int,
    quantity_after: int,
    action_type: str,
    source: str | None = None,
    reference_id: str | None = None,
    unit_cost: Decimal | None = None,
    metadata: dict | None = None,
    actor_id: int | None = None,
    occurred_at: datetime | None = None,
) -> int:
    """
    Append one movement and return its id.

    Flushes so the id is assigned; never commits. Movements are never
    updated or deleted afterwards.
    """
    delta = quantity_after - quantity_before
    if delta == 0:
        raise ValueError("zero-delta movements are not recorded")
    if action_type not in MOVEMENT_ACTION_TYPES:
        raise ValueError(f"unknown action_type: {action_type}")

    movement = StockMovement(
        store_id=store_id,
        product_id=product_id,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        delta=delta,
        action_type=action_type,
        source=source,
        reference_id=str(reference_id) if reference_id is not None else None,
        unit_cost=unit_cost,
        meta=metadata or {},
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement.id


def list_movements_since(
    store_id: int,
    since: datetime | None = None,
    *,
    product_id: int | None = None,
    until: datetime | None = None,
    action_types: tuple[str, ...] | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    """Movements for a store in occurrence order (oldest first)."""
    q = db.session.query(StockMovement).filter(StockMovement.store_id == store_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if since is not None:
        q = q.filter(StockMovement.occurred_at >= since)
    if until is not None:
        q = q.filter(StockMovement.occurred_at <= until)
    if action_types:
        q = q.filter(StockMovement.action_type.in_(action_types))

    q = q.order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def replay_quantity(store_id: int, product_id: int) -> int:
    """Quantity implied by replaying every movement from zero."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.delta), 0)
    ).filter(
        StockMovement.store_id == store_id,
        StockMovement.product_id == product_id,
    ).scalar()
    return int(total or 0)


def check_record(record: InventoryRecord) -> ReconciliationResult:
    minor_units = current_app.config.get("CURRENCY_MINOR_UNITS", 2)
    state = InventoryState(
        quantity=record.quantity,
        avg_cost=Decimal(record.avg_cost or 0),
        total_cost_value=Decimal(record.total_cost_value or 0),
    )
    return ReconciliationResult(
        store_id=record.store_id,
        product_id=record.product_id,
        recorded_quantity=record.quantity,
        replayed_quantity=replay_quantity(record.store_id, record.product_id),
        cost_value_consistent=is_cost_value_consistent(state, minor_units),
    )


def _freeze(record: InventoryRecord, result: ReconciliationResult) -> None:
    record.is_frozen = True
    record.frozen_reason = f"reconciliation failed at {utcnow().isoformat()}: {result.describe()}"
    current_app.logger.error(
        "Inventory ledger mismatch for store %s product %s: %s",
        record.store_id,
        record.product_id,
        result.describe(),
    )


def reconcile(store_id: int, product_id: int) -> ReconciliationResult:
    """
    Verify one record against its movements.

    On mismatch the record is frozen (committed) and InconsistentLedgerError
    is raised.
    """
    record = db.session.query(InventoryRecord).filter_by(
        store_id=store_id, product_id=product_id
    ).first()
    if record is None:
        replayed = replay_quantity(store_id, product_id)
        if replayed != 0:
            raise InconsistentLedgerError(
                store_id, product_id, f"movements replay to {replayed} but no inventory record exists"
            )
        return ReconciliationResult(store_id, product_id, 0, 0, True)

    result = check_record(record)
    if not result.is_consistent:
        _freeze(record, result)
        db.session.commit()
        raise InconsistentLedgerError(store_id, product_id, result.describe())
    return result


def reconcile_store(store_id: int) -> list[ReconciliationResult]:
    """Check every record of a store. Mismatches are frozen, not raised."""
    results = []
    records = db.session.query(InventoryRecord).filter_by(store_id=store_id).order_by(
        InventoryRecord.product_id.asc()
    ).all()
    for record in records:
        result = check_record(record)
        if not result.is_consistent and not record.is_frozen:
            _freeze(record, result)
        results.append(result)
    db.session.commit()
    return results


def unfreeze_record(store_id: int, product_id: int, *, resync_quantity: bool = False) -> InventoryRecord:
    """
    Release a frozen record after manual reconciliation.

    Refuses while the ledger still disagrees, unless resync_quantity is set:
    then the record's quantity is reset to the replayed quantity and its cost
    value re-anchored to quantity * avg_cost.
    """
    record = db.session.query(InventoryRecord).filter_by(
        store_id=store_id, product_id=product_id
    ).first()
    if record is None:
        raise ValueError("inventory record not found")

    result = check_record(record)
    if not result.is_consistent:
        if not resync_quantity:
            raise InconsistentLedgerError(store_id, product_id, result.describe())
        if result.replayed_quantity < 0:
            raise InconsistentLedgerError(store_id, product_id, "movements replay to a negative quantity")
        record.quantity = result.replayed_quantity
        record.total_cost_value = Decimal(record.avg_cost or 0) * record.quantity
        current_app.logger.warning(
            "Inventory record store %s product %s resynced to ledger quantity %s",
            store_id,
            product_id,
            record.quantity,
        )

    record.is_frozen = False
    record.frozen_reason = None
    db.session.commit()
    return record
