"""
Sales Service - POS transaction posting with cost capture

Writes Transaction / TransactionItem rows together with the inventory
movements they cause, in one DB transaction. The cost basis consumed by a
sale is snapshotted on the item; refunds copy it back from the item they
reverse, so COGS reversal never depends on the current average.

Any failure rolls the whole posting back: a movement never survives
without its transaction item.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, Store, Transaction, TransactionItem
from ..models.sales import REFUND_KINDS, SALE_KINDS
from ..money import quantize_cost, quantize_money, to_decimal
from valuation.time_utils import normalize_datetime, utcnow
from .concurrency import run_with_retry
from .inventory_service import _minor_units, record_refund, record_sale, record_swap


class SaleError(ValueError):
    """Raised for sale / refund posting errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _parse_line_quantity(line: dict) -> int:
    quantity = line.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise SaleError("Line quantity must be a positive integer", details={"line": line})
    return quantity


def _refunded_quantity(item_id: int) -> int:
    total = db.session.query(func.coalesce(func.sum(TransactionItem.quantity), 0)).join(
        Transaction, Transaction.id == TransactionItem.transaction_id
    ).filter(
        TransactionItem.original_item_id == item_id,
        Transaction.kind.in_(REFUND_KINDS),
        Transaction.status == "completed",
    ).scalar()
    return int(total or 0)


def _load_original_sale(original_transaction_id: int) -> Transaction:
    original = db.session.query(Transaction).filter_by(id=original_transaction_id).first()
    if original is None:
        raise SaleError("Original transaction not found")
    if original.kind not in SALE_KINDS or original.status != "completed":
        raise SaleError("Only completed sales can be refunded")
    return original


def _refundable_item(original: Transaction, original_item_id, quantity: int) -> TransactionItem:
    item = db.session.query(TransactionItem).filter_by(id=original_item_id).first()
    if item is None or item.transaction_id != original.id:
        raise SaleError(
            "Item does not belong to the original transaction",
            details={"original_item_id": original_item_id},
        )

    refundable = item.quantity - _refunded_quantity(item.id)
    if quantity > refundable:
        raise SaleError(
            "Refund exceeds refundable quantity",
            details={"original_item_id": item.id, "requested": quantity, "refundable": refundable},
        )
    return item


def _line_price(product: Product, raw_price, minor_units: int) -> Decimal:
    if raw_price is None:
        if product.sale_price is None:
            raise SaleError("Product has no price", details={"product_id": product.id})
        raw_price = product.sale_price
    return quantize_money(to_decimal(raw_price, field="unit_price"), minor_units)


def _reversal_item(txn: Transaction, item: TransactionItem, quantity: int, minor_units: int) -> TransactionItem:
    unit_price = Decimal(item.unit_price)
    unit_cost = Decimal(item.unit_cost)
    return TransactionItem(
        transaction_id=txn.id,
        product_id=item.product_id,
        quantity=quantity,
        unit_price=unit_price,
        unit_cost=unit_cost,
        total_price=quantize_money(unit_price * quantity, minor_units),
        total_cost=quantize_cost(unit_cost * quantity),
        original_item_id=item.id,
    )


def post_sale(
    store_id: int,
    lines: list[dict],
    *,
    actor_id: int | None = None,
    occurred_at=None,
) -> Transaction:
    """
    Post a completed sale.

    Each line is {"product_id", "quantity", "unit_price"?}; unit_price
    defaults to the product's sale price. Any line failing (e.g. insufficient
    stock, a malformed price) aborts the whole sale.
    """
    if not lines:
        raise SaleError("Cannot post sale with no lines")
    minor_units = _minor_units()

    def _op():
        try:
            if db.session.get(Store, store_id) is None:
                raise SaleError("Store not found", details={"store_id": store_id})
            occurred_dt = normalize_datetime(occurred_at) or utcnow()
            txn = Transaction(store_id=store_id, kind="SALE", actor_id=actor_id, created_at=occurred_dt)
            db.session.add(txn)
            db.session.flush()

            for i, line in enumerate(lines):
                quantity = _parse_line_quantity(line)
                product = db.session.query(Product).filter_by(id=line.get("product_id")).first()
                if product is None:
                    raise SaleError("Product not found", details={"product_id": line.get("product_id")})
                unit_price = _line_price(product, line.get("unit_price"), minor_units)

                applied = record_sale(
                    store_id=store_id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    reference_id=f"txn-{txn.id}:{i + 1}",
                    actor_id=actor_id,
                    occurred_at=occurred_dt,
                    commit=False,
                )
                unit_cost = applied.unit_cost or Decimal("0")
                db.session.add(
                    TransactionItem(
                        transaction_id=txn.id,
                        product_id=product.id,
                        quantity=quantity,
                        unit_price=unit_price,
                        unit_cost=unit_cost,
                        total_price=quantize_money(unit_price * quantity, minor_units),
                        total_cost=quantize_cost(unit_cost * quantity),
                    )
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return txn

    return run_with_retry(_op, extra_exceptions=(IntegrityError,))


def post_refund(
    original_transaction_id: int,
    lines: list[dict],
    *,
    discard: bool = False,
    actor_id: int | None = None,
    occurred_at=None,
) -> Transaction:
    """
    Refund items of a completed sale.

    Each line is {"original_item_id", "quantity"}. The refund repays the
    original unit price and restores stock at the original unit cost.
    Refunding more than was sold (less earlier refunds) is rejected.
    """
    if not lines:
        raise SaleError("Cannot post refund with no lines")
    minor_units = _minor_units()

    def _op():
        try:
            original = _load_original_sale(original_transaction_id)
            occurred_dt = normalize_datetime(occurred_at) or utcnow()
            txn = Transaction(
                store_id=original.store_id,
                kind="REFUND",
                original_transaction_id=original.id,
                actor_id=actor_id,
                created_at=occurred_dt,
            )
            db.session.add(txn)
            db.session.flush()

            for i, line in enumerate(lines):
                quantity = _parse_line_quantity(line)
                item = _refundable_item(original, line.get("original_item_id"), quantity)
                record_refund(
                    store_id=original.store_id,
                    product_id=item.product_id,
                    quantity=quantity,
                    original_item_id=item.id,
                    unit_price=item.unit_price,
                    discard=discard,
                    reference_id=f"txn-{txn.id}:{i + 1}",
                    actor_id=actor_id,
                    occurred_at=occurred_dt,
                    commit=False,
                )
                db.session.add(_reversal_item(txn, item, quantity, minor_units))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return txn

    return run_with_retry(_op, extra_exceptions=(IntegrityError,))


def post_swap(
    original_transaction_id: int,
    *,
    original_item_id: int,
    quantity: int,
    issued_product_id: int,
    issued_quantity: int | None = None,
    unit_price=None,
    actor_id: int | None = None,
    occurred_at=None,
) -> tuple[Transaction, Transaction]:
    """
    Exchange sold units for another product.

    Writes a SWAP_REFUND reversing the original line and a SWAP_SALE for the
    issued product, both pointing at the original sale, plus the two 'swap'
    stock movements. Returns (swap_refund, swap_sale).
    """
    quantity = _parse_line_quantity({"quantity": quantity})
    issued_quantity = _parse_line_quantity({"quantity": quantity if issued_quantity is None else issued_quantity})
    minor_units = _minor_units()

    def _op():
        try:
            original = _load_original_sale(original_transaction_id)
            item = _refundable_item(original, original_item_id, quantity)
            product = db.session.query(Product).filter_by(id=issued_product_id).first()
            if product is None:
                raise SaleError("Product not found", details={"product_id": issued_product_id})
            price = _line_price(product, unit_price, minor_units)

            occurred_dt = normalize_datetime(occurred_at) or utcnow()
            swap_refund = Transaction(
                store_id=original.store_id,
                kind="SWAP_REFUND",
                original_transaction_id=original.id,
                actor_id=actor_id,
                created_at=occurred_dt,
            )
            swap_sale = Transaction(
                store_id=original.store_id,
                kind="SWAP_SALE",
                original_transaction_id=original.id,
                actor_id=actor_id,
                created_at=occurred_dt,
            )
            db.session.add_all([swap_refund, swap_sale])
            db.session.flush()

            _, issued = record_swap(
                store_id=original.store_id,
                returned_product_id=item.product_id,
                returned_quantity=quantity,
                issued_product_id=product.id,
                issued_quantity=issued_quantity,
                original_item_id=item.id,
                reference_id=f"txn-{swap_refund.id}/{swap_sale.id}",
                actor_id=actor_id,
                occurred_at=occurred_dt,
                commit=False,
            )
            unit_cost = issued.unit_cost or Decimal("0")
            db.session.add(_reversal_item(swap_refund, item, quantity, minor_units))
            db.session.add(
                TransactionItem(
                    transaction_id=swap_sale.id,
                    product_id=product.id,
                    quantity=issued_quantity,
                    unit_price=price,
                    unit_cost=unit_cost,
                    total_price=quantize_money(price * issued_quantity, minor_units),
                    total_cost=quantize_cost(unit_cost * issued_quantity),
                )
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return swap_refund, swap_sale

    return run_with_retry(_op, extra_exceptions=(IntegrityError,))
