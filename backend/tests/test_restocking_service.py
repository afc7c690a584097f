# Overview: Pytest coverage for restocking priority, stale stock and stock-level suggestions.

from decimal import Decimal

import pytest

from valuation.models import Product
from valuation.services.inventory_service import record_restock, set_stock_levels
from valuation.services.profitability_service import compute_product_profitability, save_profitability_snapshots
from valuation.services.reporting_service import ReportError
from valuation.services.restocking_service import (
    get_restocking_priority,
    get_stale_inventory,
    recommend_stock_levels,
)
from valuation.services.sales_service import post_sale


@pytest.fixture
def stale_product(db_session):
    product = Product(sku="STALE-003", name="Dusty Lamp", sale_price=Decimal("30.00"), cost=Decimal("12"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def assortment(db_session, store, product, second_product, stale_product, days_ago):
    """
    Widget: fast mover about to run out.
    Gadget: slow mover with months of stock.
    Dusty Lamp: received, never sold.
    """
    record_restock(store_id=store.id, product_id=product.id, quantity=12, unit_cost="50", occurred_at=days_ago(20))
    record_restock(store_id=store.id, product_id=second_product.id, quantity=100, unit_cost="8", occurred_at=days_ago(20))
    record_restock(store_id=store.id, product_id=stale_product.id, quantity=5, unit_cost="12", occurred_at=days_ago(20))
    post_sale(store.id, [{"product_id": product.id, "quantity": 10}], occurred_at=days_ago(5))
    post_sale(store.id, [{"product_id": second_product.id, "quantity": 3}], occurred_at=days_ago(5))


class TestRestockingPriority:
    """Ranking by profit contribution per day."""

    def test_only_products_running_out_are_ranked(self, store, product, assortment):
        report = get_restocking_priority(store.id)

        assert report["basis"] == "computed"
        assert report["horizon_days"] == 14
        [item] = report["items"]
        assert item["product_id"] == product.id
        assert item["days_to_stockout"] == 6
        assert item["profit_per_day"] == "16.6650"
        assert item["recommendation"] == "Restock within this week"

    def test_uses_snapshots_when_present(self, store, product, assortment):
        save_profitability_snapshots(store.id, 30, compute_product_profitability(store.id, 30))

        report = get_restocking_priority(store.id)
        assert report["basis"] == "snapshot"
        assert [i["product_id"] for i in report["items"]] == [product.id]

    def test_longer_horizon_includes_slow_movers(self, store, product, second_product, assortment):
        report = get_restocking_priority(store.id, horizon_days=2000)
        assert [i["product_id"] for i in report["items"]] == [product.id, second_product.id]

        limited = get_restocking_priority(store.id, horizon_days=2000, limit=1)
        assert len(limited["items"]) == 1

    def test_sold_out_is_urgent(self, store, product, assortment, days_ago):
        post_sale(store.id, [{"product_id": product.id, "quantity": 2}], occurred_at=days_ago(1))

        [item] = get_restocking_priority(store.id)["items"]
        assert item["current_quantity"] == 0
        assert item["days_to_stockout"] == 0
        assert item["recommendation"].startswith("URGENT: Item out of stock")

    def test_bad_parameters(self, store, assortment):
        with pytest.raises(ReportError):
            get_restocking_priority(store.id, limit=0)
        with pytest.raises(ReportError):
            get_restocking_priority(store.id, horizon_days=0)


def test_stale_inventory_lists_unsold_stock(store, product, stale_product, assortment):
    rows = get_stale_inventory(store.id, 30)

    assert [r["product_id"] for r in rows] == [stale_product.id]
    assert rows[0]["last_sold_at"] is None
    assert rows[0]["days_since_last_sale"] is None
    assert rows[0]["inventory_value"] == "60.00"


def test_stale_inventory_includes_old_sellers(db_session, store, product, stale_product, assortment, days_ago):
    post_sale(store.id, [{"product_id": stale_product.id, "quantity": 1}], occurred_at=days_ago(40))

    rows = {r["product_id"]: r for r in get_stale_inventory(store.id, 30)}
    assert rows[stale_product.id]["days_since_last_sale"] == 40
    assert product.id not in rows

    assert stale_product.id not in {r["product_id"] for r in get_stale_inventory(store.id, 60)}


def test_stock_level_recommendations(store, product, assortment):
    [rec] = [r for r in recommend_stock_levels(store.id) if r["product_id"] == product.id]

    assert rec["recommended_min_stock"] == 5
    assert rec["recommended_max_stock"] == 15
    assert rec["current_min_stock"] == 0
    assert rec["confidence"] == "0.6"

    set_stock_levels(store_id=store.id, product_id=product.id, min_stock_level=5, max_stock_level=15)
    assert product.id not in {r["product_id"] for r in recommend_stock_levels(store.id)}
