from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from valuation.time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Running cost basis for one (store, product) pair.

    INVARIANTS:
    - quantity >= 0 (also enforced by a check constraint)
    - total_cost_value tracks quantity * avg_cost. It is maintained
      incrementally by the costing engine, never recomputed from history.
    - Every change to quantity is accompanied by exactly one StockMovement
      row written in the same DB transaction.

    CONCURRENCY:
    Rows are read with SELECT ... FOR UPDATE on the request path and carry
    a version counter, so a lost update raises StaleDataError and the
    mutation is retried instead of silently racing on avg_cost.

    FROZEN:
    A failed reconciliation freezes the row. All mutations are rejected
    until someone reconciles it manually and unfreezes it.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_inventory_records_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_records_quantity_nonnegative"),
        db.Index("ix_inventory_records_store_quantity", "store_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    avg_cost = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_cost_value = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    last_cost_update = db.Column(db.DateTime(timezone=True), nullable=True)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    max_stock_level = db.Column(db.Integer, nullable=True)

    is_frozen = db.Column(db.Boolean, nullable=False, default=False)
    frozen_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("inventory_records", lazy=True))
    product = db.relationship("Product", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord store_id={self.store_id} product_id={self.product_id} "
            f"qty={self.quantity} avg_cost={self.avg_cost}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "avg_cost": decimal_str(self.avg_cost),
            "total_cost_value": decimal_str(self.total_cost_value),
            "last_cost_update": to_utc_z(self.last_cost_update),
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "is_frozen": self.is_frozen,
            "frozen_reason": self.frozen_reason,
            "version_id": self.version_id,
        }


class InventoryCostLayer(db.Model):
    """
    Audit record of one incoming batch (quantity and unit cost).

    Layers are never consumed: costing is weighted-average per store-product.
    They only answer "what did we pay for the stock we received, and when".
    """
    __tablename__ = "inventory_cost_layers"
    __table_args__ = (
        db.Index("ix_cost_layers_store_product_created", "store_id", "product_id", "created_at"),
        db.CheckConstraint("quantity_received > 0", name="ck_cost_layers_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=False, index=True)

    quantity_received = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False)
    source = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "movement_id": self.movement_id,
            "quantity_received": self.quantity_received,
            "unit_cost": decimal_str(self.unit_cost),
            "source": self.source,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }
