# Overview: Pytest coverage for per-store profitability batch runs.

from datetime import timedelta
from decimal import Decimal

from valuation import create_app
from valuation.config import TestConfig
from valuation.extensions import db
from valuation.models import BatchRun, Product, ProductProfitabilitySnapshot, Store
from valuation.services import batch_service
from valuation.services.inventory_service import record_restock
from valuation.services.profitability_service import ComputationTimeout
from valuation.services.sales_service import post_sale
from valuation.time_utils import utcnow


def _activity(store, product, days_ago, quantity=3):
    record_restock(store_id=store.id, product_id=product.id, quantity=20, unit_cost="50", occurred_at=days_ago(10))
    post_sale(store.id, [{"product_id": product.id, "quantity": quantity}], occurred_at=days_ago(2))


def _snapshots(db_session, store):
    return db_session.query(ProductProfitabilitySnapshot).filter_by(store_id=store.id).all()


class TestRunStoreJob:
    """One store's run lifecycle."""

    def test_successful_run_commits_snapshots(self, db_session, store, product, days_ago):
        _activity(store, product, days_ago)

        result = batch_service.run_store_profitability_job(store.id, 30)

        assert result.ok
        assert result.snapshots_written == 1
        run = db_session.get(BatchRun, result.run_id)
        assert run.status == "completed"
        assert run.snapshots_written == 1
        assert run.completed_at is not None
        [snapshot] = _snapshots(db_session, store)
        assert snapshot.units_sold == 3
        assert snapshot.computed_at == run.started_at

    def test_rerun_with_no_activity_is_identical(self, db_session, store, product, days_ago):
        _activity(store, product, days_ago)

        batch_service.run_store_profitability_job(store.id, 30)
        first = [s.to_dict() for s in _snapshots(db_session, store)]
        batch_service.run_store_profitability_job(store.id, 30)
        second = [s.to_dict() for s in _snapshots(db_session, store)]

        for row in first + second:
            row.pop("computed_at")
        assert first == second

    def test_active_run_blocks_a_second_claim(self, db_session, store, product, days_ago):
        _activity(store, product, days_ago)
        active = BatchRun(store_id=store.id, job_type="profitability", status="running", started_at=utcnow())
        db_session.add(active)
        db_session.commit()

        result = batch_service.run_store_profitability_job(store.id, 30)

        assert not result.ok
        assert "already running" in result.error
        assert result.run_id != active.id
        assert db_session.get(BatchRun, result.run_id).status == "failed"
        assert _snapshots(db_session, store) == []

    def test_abandoned_run_is_failed_and_replaced(self, db_session, store, product, days_ago):
        _activity(store, product, days_ago)
        stale = BatchRun(
            store_id=store.id,
            job_type="profitability",
            status="running",
            started_at=utcnow() - timedelta(hours=2),
        )
        db_session.add(stale)
        db_session.commit()
        stale_id = stale.id

        result = batch_service.run_store_profitability_job(store.id, 30, timeout_seconds=60)

        assert result.ok
        abandoned = db_session.get(BatchRun, stale_id)
        assert abandoned.status == "failed"
        assert abandoned.error_message.startswith("abandoned")

    def test_failure_rolls_back_partial_snapshots(self, db_session, store, product, days_ago, monkeypatch):
        _activity(store, product, days_ago)
        real_save = batch_service.save_profitability_snapshots

        def save_then_crash(*args, **kwargs):
            real_save(*args, **kwargs)
            raise RuntimeError("disk full")

        monkeypatch.setattr(batch_service, "save_profitability_snapshots", save_then_crash)

        result = batch_service.run_store_profitability_job(store.id, 30)

        assert result.status == "failed"
        assert result.error == "disk full"
        assert _snapshots(db_session, store) == []
        run = db_session.get(BatchRun, result.run_id)
        assert run.status == "failed"
        assert run.error_message == "disk full"

    def test_timeout_marks_run_failed(self, db_session, store, product, days_ago, monkeypatch):
        _activity(store, product, days_ago)

        def too_slow(*args, **kwargs):
            raise ComputationTimeout("profitability for store timed out")

        monkeypatch.setattr(batch_service, "compute_product_profitability", too_slow)

        result = batch_service.run_store_profitability_job(store.id, 30)
        assert not result.ok
        assert "timed out" in result.error
        assert db_session.get(BatchRun, result.run_id).status == "failed"

    def test_unknown_store(self, db_session):
        result = batch_service.run_store_profitability_job(31337, 30)
        assert result.run_id is None
        assert result.error == "Store not found"


class TestRunBatch:
    """Fan-out over stores."""

    def test_defaults_to_active_stores(self, db_session, store, other_store, product, days_ago):
        closed = Store(name="Closed", code="CLOSED", is_active=False)
        db_session.add(closed)
        db_session.commit()
        _activity(store, product, days_ago)

        results = batch_service.run_profitability_batch(period_days=30)

        assert [r.store_id for r in results] == [store.id, other_store.id]
        assert all(r.ok for r in results)
        assert [r.snapshots_written for r in results] == [1, 0]

    def test_one_failing_store_does_not_stop_others(self, db_session, store, other_store, product, days_ago):
        _activity(store, product, days_ago)
        db_session.add(BatchRun(store_id=other_store.id, job_type="profitability", status="pending", started_at=utcnow()))
        db_session.commit()

        results = batch_service.run_profitability_batch(store_ids=[other_store.id, store.id], period_days=30)

        by_store = {r.store_id: r for r in results}
        assert by_store[store.id].ok
        assert not by_store[other_store.id].ok
        assert len(_snapshots(db_session, store)) == 1

    def test_list_batch_runs_filters(self, db_session, store, other_store):
        batch_service.run_profitability_batch(period_days=30)

        assert len(batch_service.list_batch_runs()) == 2
        [run] = batch_service.list_batch_runs(store.id, status="completed")
        assert run.store_id == store.id
        assert batch_service.list_batch_runs(status="failed") == []


def test_parallel_workers_use_their_own_app_context(tmp_path, days_ago):
    app = create_app(
        config_overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'batch.sqlite3'}"},
        config_object=TestConfig,
    )
    with app.app_context():
        db.create_all()
        product = Product(sku="PAR-1", name="Parallel", sale_price=Decimal("10.00"), cost=Decimal("4"))
        stores = [Store(name=f"Store {i}", code=f"S{i}") for i in range(3)]
        db.session.add_all([product, *stores])
        db.session.commit()
        for i, s in enumerate(stores):
            _activity(s, product, days_ago, quantity=i + 1)

        results = batch_service.run_profitability_batch(period_days=30, max_workers=3)

        assert [r.store_id for r in results] == sorted(s.id for s in stores)
        assert all(r.ok for r in results)
        units = {
            s.store_id: s.units_sold for s in db.session.query(ProductProfitabilitySnapshot).all()
        }
        assert units == {s.id: i + 1 for i, s in enumerate(stores)}
        db.session.remove()
        db.drop_all()
