# Overview: Pytest coverage for POS posting (sales, refunds, swaps) and its all-or-nothing rollback.

from decimal import Decimal

import pytest

from valuation.models import InventoryRecord, StockMovement, Transaction, TransactionItem
from valuation.services.inventory_service import InsufficientStockError, record_restock
from valuation.services.profitability_service import compute_product_profitability
from valuation.services.sales_service import SaleError, post_refund, post_sale, post_swap


def _quantity(db_session, store, product):
    return db_session.query(InventoryRecord).filter_by(store_id=store.id, product_id=product.id).one().quantity


def _stock_both(store, product, second_product, days_ago=None):
    occurred_at = days_ago(10) if days_ago else None
    record_restock(store_id=store.id, product_id=product.id, quantity=10, unit_cost="50", occurred_at=occurred_at)
    record_restock(store_id=store.id, product_id=second_product.id, quantity=10, unit_cost="8", occurred_at=occurred_at)


class TestPostingRollback:
    """A failing line discards every line posted before it."""

    def test_malformed_price_on_later_line(self, db_session, store, product, second_product):
        _stock_both(store, product, second_product)

        with pytest.raises(ValueError):
            post_sale(
                store.id,
                [
                    {"product_id": product.id, "quantity": 3},
                    {"product_id": second_product.id, "quantity": 1, "unit_price": "abc"},
                ],
            )
        db_session.commit()

        assert _quantity(db_session, store, product) == 10
        assert db_session.query(StockMovement).filter_by(action_type="sale").count() == 0
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionItem).count() == 0

    def test_insufficient_stock_on_later_line(self, db_session, store, product, second_product):
        _stock_both(store, product, second_product)

        with pytest.raises(InsufficientStockError):
            post_sale(
                store.id,
                [
                    {"product_id": product.id, "quantity": 3},
                    {"product_id": second_product.id, "quantity": 11},
                ],
            )
        db_session.commit()

        assert _quantity(db_session, store, product) == 10
        assert db_session.query(Transaction).count() == 0

    def test_unknown_store(self, db_session, store, product):
        with pytest.raises(ValueError):
            post_sale(424242, [{"product_id": product.id, "quantity": 1}])
        db_session.commit()

        assert db_session.query(Transaction).count() == 0

    def test_refund_with_foreign_item_on_later_line(self, db_session, store, product, second_product):
        _stock_both(store, product, second_product)
        sale = post_sale(store.id, [{"product_id": product.id, "quantity": 4}])
        item_id = sale.items[0].id

        with pytest.raises(SaleError):
            post_refund(
                sale.id,
                [
                    {"original_item_id": item_id, "quantity": 2},
                    {"original_item_id": 987654, "quantity": 1},
                ],
            )
        db_session.commit()

        assert _quantity(db_session, store, product) == 6
        assert db_session.query(Transaction).filter_by(kind="REFUND").count() == 0
        assert db_session.query(StockMovement).filter_by(action_type="refund").count() == 0


class TestPostSwap:
    """Exchanges write SWAP_REFUND / SWAP_SALE transactions."""

    def test_swap_reaches_profitability(self, db_session, store, product, second_product, days_ago):
        _stock_both(store, product, second_product, days_ago)
        sale = post_sale(store.id, [{"product_id": product.id, "quantity": 2}], occurred_at=days_ago(5))
        item = sale.items[0]

        swap_refund, swap_sale = post_swap(
            sale.id,
            original_item_id=item.id,
            quantity=1,
            issued_product_id=second_product.id,
            issued_quantity=2,
            occurred_at=days_ago(4),
        )

        assert swap_refund.kind == "SWAP_REFUND"
        assert swap_sale.kind == "SWAP_SALE"
        assert swap_refund.original_transaction_id == swap_sale.original_transaction_id == sale.id

        [returned] = swap_refund.items
        assert returned.original_item_id == item.id
        assert Decimal(returned.unit_cost) == Decimal("50")
        assert Decimal(returned.total_price) == Decimal("100.00")

        [issued] = swap_sale.items
        assert issued.product_id == second_product.id
        assert issued.quantity == 2
        assert Decimal(issued.unit_price) == Decimal("20.00")
        assert Decimal(issued.unit_cost) == Decimal("8")

        assert _quantity(db_session, store, product) == 9
        assert _quantity(db_session, store, second_product) == 8
        swaps = db_session.query(StockMovement).filter_by(action_type="swap").order_by(StockMovement.id).all()
        assert [m.source for m in swaps] == ["pos_swap_in", "pos_swap_out"]

        rows = {r.product_id: r for r in compute_product_profitability(store.id, 30)}
        widget = rows[product.id]
        assert widget.units_sold == 2
        assert widget.refunded_quantity == 1
        assert widget.net_revenue == Decimal("100.00")
        assert widget.total_profit == Decimal("50.00")
        gadget = rows[second_product.id]
        assert gadget.units_sold == 2
        assert gadget.gross_revenue == Decimal("40.00")
        assert gadget.gross_cost == Decimal("16.00")

    def test_swap_counts_against_refundable_quantity(self, db_session, store, product, second_product):
        _stock_both(store, product, second_product)
        sale = post_sale(store.id, [{"product_id": product.id, "quantity": 2}])
        item_id = sale.items[0].id
        post_swap(sale.id, original_item_id=item_id, quantity=1, issued_product_id=second_product.id)

        with pytest.raises(SaleError) as exc:
            post_swap(sale.id, original_item_id=item_id, quantity=2, issued_product_id=second_product.id)
        assert exc.value.details["refundable"] == 1

    def test_failed_issue_leg_leaves_nothing(self, db_session, store, product, second_product):
        _stock_both(store, product, second_product)
        sale = post_sale(store.id, [{"product_id": product.id, "quantity": 2}])

        with pytest.raises(InsufficientStockError):
            post_swap(
                sale.id,
                original_item_id=sale.items[0].id,
                quantity=1,
                issued_product_id=second_product.id,
                issued_quantity=50,
            )
        db_session.commit()

        assert db_session.query(Transaction).count() == 1
        assert _quantity(db_session, store, product) == 8
        assert db_session.query(StockMovement).filter_by(action_type="swap").count() == 0
