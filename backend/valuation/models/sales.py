from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from valuation.time_utils import to_utc_z


TRANSACTION_KINDS = ("SALE", "REFUND", "SWAP_SALE", "SWAP_REFUND")
SALE_KINDS = ("SALE", "SWAP_SALE")
REFUND_KINDS = ("REFUND", "SWAP_REFUND")


class Transaction(db.Model):
    """
    POS transaction header.

    Owned by the transactional subsystem. The valuation engine only reads
    completed transactions; sales_service writes them for callers that do
    not have their own POS tables.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_store_kind_created", "store_id", "kind", "created_at"),
        db.Index("ix_transactions_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, default="SALE")
    status = db.Column(db.String(16), nullable=False, default="completed")

    # Refunds point back at the sale they reverse
    original_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    actor_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )
    original_transaction = db.relationship("Transaction", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "kind": self.kind,
            "status": self.status,
            "original_transaction_id": self.original_transaction_id,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class TransactionItem(db.Model):
    """
    One line of a transaction.

    unit_cost is the cost basis snapshotted when the line was posted (the
    store's average cost for sales, the original sale's unit cost for
    refunds). It is never re-derived from the live InventoryRecord.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.Index("ix_transaction_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(18, 2), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_price = db.Column(db.Numeric(18, 2), nullable=False)
    total_cost = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    original_item_id = db.Column(db.Integer, db.ForeignKey("transaction_items.id"), nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": decimal_str(self.unit_price),
            "unit_cost": decimal_str(self.unit_cost),
            "total_price": decimal_str(self.total_price),
            "total_cost": decimal_str(self.total_cost),
            "original_item_id": self.original_item_id,
        }
