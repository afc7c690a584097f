from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from valuation.time_utils import to_utc_z


MOVEMENT_ACTION_TYPES = (
    "sale",
    "refund",
    "restock",
    "damage_removal",
    "expiry_removal",
    "adjustment",
    "swap",
)


class StockMovement(db.Model):
    """
    Append-only record of one quantity change.

    Exactly one row per InventoryRecord mutation, written in the same DB
    transaction. Rows are never updated or deleted: replaying delta from
    zero must reproduce InventoryRecord.quantity.

    unit_cost is the cost basis the movement applied (restock cost, avg
    cost consumed by a sale/removal, original sale cost restored by a
    refund).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_store_product_occurred", "store_id", "product_id", "occurred_at"),
        db.Index("ix_movements_store_action_occurred", "store_id", "action_type", "occurred_at"),
        db.CheckConstraint("delta = quantity_after - quantity_before", name="ck_movements_delta_consistent"),
        db.CheckConstraint("delta <> 0", name="ck_movements_delta_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    delta = db.Column(db.Integer, nullable=False)

    action_type = db.Column(db.String(32), nullable=False)
    source = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True, index=True)

    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "delta": self.delta,
            "action_type": self.action_type,
            "source": self.source,
            "reference_id": self.reference_id,
            "unit_cost": decimal_str(self.unit_cost),
            "metadata": self.meta or {},
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


class PriceChangeEvent(db.Model):
    """
    Cost or sale price changed for a store-product.

    Written for manual price edits and for restocks whose unit cost differs
    materially from the running average.
    """
    __tablename__ = "price_change_events"
    __table_args__ = (
        db.Index("ix_price_change_store_product_occurred", "store_id", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)

    source = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    old_cost = db.Column(db.Numeric(18, 6), nullable=True)
    new_cost = db.Column(db.Numeric(18, 6), nullable=True)
    old_sale_price = db.Column(db.Numeric(18, 2), nullable=True)
    new_sale_price = db.Column(db.Numeric(18, 2), nullable=True)

    meta = db.Column("metadata", db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "actor_id": self.actor_id,
            "source": self.source,
            "reference_id": self.reference_id,
            "old_cost": decimal_str(self.old_cost),
            "new_cost": decimal_str(self.new_cost),
            "old_sale_price": decimal_str(self.old_sale_price),
            "new_sale_price": decimal_str(self.new_sale_price),
            "metadata": self.meta or {},
            "occurred_at": to_utc_z(self.occurred_at),
        }


class InventoryRevaluationEvent(db.Model):
    """
    Quantity/cost change with no sale or refund revenue behind it.

    Damage, expiry, theft and shrinkage write-offs use a `stock_removal_*`
    source and carry `lossAmount` and `reason` in metadata; the
    profitability aggregator counts those as losses. Count corrections use
    source `adjustment`.
    """
    __tablename__ = "inventory_revaluation_events"
    __table_args__ = (
        db.Index("ix_revaluation_store_product_occurred", "store_id", "product_id", "occurred_at"),
        db.Index("ix_revaluation_store_source_occurred", "store_id", "source", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True, index=True)
    actor_id = db.Column(db.Integer, nullable=True)

    source = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    revalued_quantity = db.Column(db.Integer, nullable=True)

    avg_cost_before = db.Column(db.Numeric(18, 6), nullable=True)
    avg_cost_after = db.Column(db.Numeric(18, 6), nullable=True)
    total_cost_before = db.Column(db.Numeric(18, 6), nullable=True)
    total_cost_after = db.Column(db.Numeric(18, 6), nullable=True)
    delta_value = db.Column(db.Numeric(18, 6), nullable=True)

    meta = db.Column("metadata", db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "movement_id": self.movement_id,
            "actor_id": self.actor_id,
            "source": self.source,
            "reference_id": self.reference_id,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "revalued_quantity": self.revalued_quantity,
            "avg_cost_before": decimal_str(self.avg_cost_before),
            "avg_cost_after": decimal_str(self.avg_cost_after),
            "total_cost_before": decimal_str(self.total_cost_before),
            "total_cost_after": decimal_str(self.total_cost_after),
            "delta_value": decimal_str(self.delta_value),
            "metadata": self.meta or {},
            "occurred_at": to_utc_z(self.occurred_at),
        }
