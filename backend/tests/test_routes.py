# Overview: Pytest coverage for the HTTP surface (inventory, reports, batch, health).

import logging

from valuation.models import InventoryRecord
from valuation.services.sales_service import post_sale
from valuation.time_utils import to_utc_z


def _restock(client, store, product, quantity=10, unit_cost="50", **extra):
    payload = {"store_id": store.id, "product_id": product.id, "quantity": quantity, "unit_cost": unit_cost}
    payload.update(extra)
    return client.post("/api/inventory/restock", json=payload)


class TestInventoryRoutes:
    """POST mutations map onto inventory_service; errors are 400."""

    def test_restock_returns_movement_and_summary(self, client, db_session, store, product):
        response = _restock(client, store, product)

        assert response.status_code == 201
        body = response.get_json()
        assert body["movement"]["action_type"] == "restock"
        assert body["movement"]["delta"] == 10
        assert body["summary"]["quantity"] == 10
        assert body["summary"]["avg_cost"] == "50.000000"
        assert body["summary"]["cost_value_consistent"] is True

    def test_zero_quantity_is_a_noop(self, client, db_session, store, product):
        response = _restock(client, store, product, quantity=0)

        assert response.status_code == 200
        assert response.get_json()["movement"]["movement_id"] is None

    def test_payload_validation(self, client, db_session, store, product):
        assert _restock(client, store, product, quantity=2.5).status_code == 400
        assert _restock(client, store, product, unit_cost="0").status_code == 400
        assert _restock(client, store, product, unit_cost="abc").status_code == 400

        response = _restock(client, store, product, surprise=True)
        assert response.status_code == 400
        assert "Field not allowed" in response.get_json()["error"]

        response = client.post("/api/inventory/restock", json={"store_id": store.id})
        assert response.status_code == 400
        assert "Missing required fields" in response.get_json()["error"]

    def test_over_sale_is_rejected(self, client, db_session, store, product):
        _restock(client, store, product, quantity=2)

        response = client.post(
            "/api/inventory/sale", json={"store_id": store.id, "product_id": product.id, "quantity": 3}
        )
        assert response.status_code == 400
        assert "insufficient stock" in response.get_json()["error"]

    def test_sale_refund_removal_adjust(self, client, db_session, store, product):
        _restock(client, store, product, quantity=10, occurred_at="2020-01-01T00:00:00Z")

        sale = client.post(
            "/api/inventory/sale",
            json={"store_id": store.id, "product_id": product.id, "quantity": 4, "unit_price": "100"},
        )
        assert sale.status_code == 201
        assert sale.get_json()["movement"]["unit_cost"] == "50.000000"

        refund = client.post(
            "/api/inventory/refund",
            json={"store_id": store.id, "product_id": product.id, "quantity": 1, "original_unit_cost": "50"},
        )
        assert refund.status_code == 201
        assert refund.get_json()["summary"]["quantity"] == 7

        removal = client.post(
            "/api/inventory/removal",
            json={"store_id": store.id, "product_id": product.id, "quantity": 2, "reason": "expired"},
        )
        assert removal.status_code == 201
        assert removal.get_json()["movement"]["action_type"] == "expiry_removal"

        bad_reason = client.post(
            "/api/inventory/removal",
            json={"store_id": store.id, "product_id": product.id, "quantity": 1, "reason": "lost at sea"},
        )
        assert bad_reason.status_code == 400

        adjust = client.post(
            "/api/inventory/adjust",
            json={"store_id": store.id, "product_id": product.id, "quantity_delta": 3, "note": "cycle count"},
        )
        assert adjust.status_code == 201
        assert adjust.get_json()["summary"]["quantity"] == 8

    def test_summary_and_movements(self, client, db_session, store, product):
        _restock(client, store, product, quantity=5, occurred_at="2020-01-01T00:00:00Z")
        _restock(client, store, product, quantity=5, unit_cost="60")

        assert client.get(f"/api/inventory/{product.id}/summary").status_code == 400
        summary = client.get(f"/api/inventory/{product.id}/summary?store_id={store.id}").get_json()
        assert summary["avg_cost"] == "55.000000"

        movements = client.get(f"/api/inventory/{product.id}/movements?store_id={store.id}").get_json()["movements"]
        assert [m["quantity_after"] for m in movements] == [5, 10]

        recent = client.get(
            f"/api/inventory/{product.id}/movements?store_id={store.id}&since=2021-01-01T00:00:00Z"
        ).get_json()["movements"]
        assert len(recent) == 1

        bad = client.get(f"/api/inventory/{product.id}/movements?store_id={store.id}&since=yesterday")
        assert bad.status_code == 400

    def test_reconcile_conflict(self, client, db_session, store, product):
        _restock(client, store, product, quantity=5)

        ok = client.post(f"/api/inventory/{product.id}/reconcile?store_id={store.id}")
        assert ok.status_code == 200
        assert ok.get_json()["is_consistent"] is True

        record = db_session.query(InventoryRecord).filter_by(store_id=store.id, product_id=product.id).one()
        record.quantity = 7
        db_session.commit()

        conflict = client.post(f"/api/inventory/{product.id}/reconcile?store_id={store.id}")
        assert conflict.status_code == 409
        assert conflict.get_json()["product_id"] == product.id

        frozen = client.post(
            "/api/inventory/sale", json={"store_id": store.id, "product_id": product.id, "quantity": 1}
        )
        assert frozen.status_code == 400
        assert "frozen" in frozen.get_json()["error"]

    def test_swap_posts_both_transactions(self, client, db_session, store, product, second_product):
        _restock(client, store, product)
        _restock(client, store, second_product, unit_cost="8")
        sale = post_sale(store.id, [{"product_id": product.id, "quantity": 2}])
        sale_id, item_id = sale.id, sale.items[0].id
        payload = {
            "original_transaction_id": sale_id,
            "original_item_id": item_id,
            "quantity": 1,
            "issued_product_id": second_product.id,
        }

        response = client.post("/api/inventory/swap", json=payload)
        assert response.status_code == 201
        body = response.get_json()
        assert body["swap_refund"]["kind"] == "SWAP_REFUND"
        assert body["swap_refund"]["original_transaction_id"] == sale_id
        assert body["swap_sale"]["kind"] == "SWAP_SALE"
        assert body["swap_sale"]["items"][0]["unit_price"] == "20.00"

        over = client.post("/api/inventory/swap", json={**payload, "quantity": 2})
        assert over.status_code == 400
        assert over.get_json()["details"]["refundable"] == 1

        assert client.post("/api/inventory/swap", json={**payload, "quantity": 0}).status_code == 400

    def test_unexpected_failure_is_logged(self, client, db_session, store, product, monkeypatch, caplog):
        def broken_restock(**kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr("valuation.services.inventory_service.record_restock", broken_restock)
        with caplog.at_level(logging.ERROR):
            response = _restock(client, store, product)

        assert response.status_code == 500
        assert response.get_json()["error"] == "Internal server error"
        assert "Failed to record restock" in caplog.text


class TestReportAndBatchRoutes:
    """Reports read snapshots and records; batch writes snapshots."""

    def _seed(self, client, store, product, days_ago):
        _restock(client, store, product, quantity=12, occurred_at=to_utc_z(days_ago(20)))
        post_sale(store.id, [{"product_id": product.id, "quantity": 10}], occurred_at=days_ago(1))

    def test_profitability_after_batch(self, client, db_session, store, product, days_ago):
        self._seed(client, store, product, days_ago)

        empty = client.get(f"/api/reports/profitability?store_id={store.id}").get_json()
        assert empty["rows"] == []
        assert empty["computed_at"] is None

        batch = client.post("/api/batch/profitability", json={"store_id": store.id})
        assert batch.status_code == 200
        assert batch.get_json()["results"][0]["snapshots_written"] == 1

        report = client.get(f"/api/reports/profitability?store_id={store.id}").get_json()
        assert report["period_days"] == 30
        assert report["computed_at"] is not None
        [row] = report["rows"]
        assert row["total_profit"] == "500.00"
        assert row["units_sold"] == 10

        runs = client.get(f"/api/batch/runs?store_id={store.id}").get_json()["runs"]
        assert [r["status"] for r in runs] == ["completed"]

    def test_batch_reports_partial_failure(self, client, db_session, store):
        response = client.post("/api/batch/profitability", json={"store_id": 999999})
        assert response.status_code == 207
        assert response.get_json()["ok"] is False

        assert client.post("/api/batch/profitability", json={"max_workers": 0}).status_code == 400
        assert client.post("/api/batch/profitability", json={"store_id": "x"}).status_code == 400

    def test_read_reports(self, client, db_session, store, product, second_product, days_ago):
        self._seed(client, store, product, days_ago)
        _restock(client, store, second_product, quantity=4, unit_cost="8")
        client.post(
            "/api/inventory/removal",
            json={"store_id": store.id, "product_id": second_product.id, "quantity": 1, "reason": "damaged"},
        )

        restocking = client.get(f"/api/reports/restocking?store_id={store.id}").get_json()
        assert [i["product_id"] for i in restocking["items"]] == [product.id]

        stale = client.get(f"/api/reports/stale?store_id={store.id}").get_json()["items"]
        assert [i["product_id"] for i in stale] == [second_product.id]

        value = client.get(f"/api/reports/inventory-value?store_id={store.id}").get_json()
        assert value["total_units"] == 5
        assert value["total_value"] == "124.00"

        history = client.get(f"/api/reports/cost-history/{second_product.id}?store_id={store.id}").get_json()
        assert [e["type"] for e in history["entries"]] == ["revaluation", "cost_layer"]

        patterns = client.get(f"/api/reports/removal-patterns?store_id={store.id}").get_json()["patterns"]
        assert patterns[0]["product_id"] == second_product.id

        levels = client.get(f"/api/reports/stock-levels?store_id={store.id}").get_json()
        assert "recommendations" in levels

    def test_report_errors(self, client, db_session, store):
        assert client.get("/api/reports/profitability").status_code == 400
        assert client.get("/api/reports/profitability?store_id=4040").status_code == 400
        assert client.get(f"/api/reports/restocking?store_id={store.id}&limit=0").status_code == 400
        assert client.get(f"/api/reports/cost-history/4040?store_id={store.id}").status_code == 400


def test_health(client, db_session, store):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"]["stores"] == 1
