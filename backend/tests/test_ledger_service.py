# Overview: Pytest coverage for the stock movement ledger, replay and freeze/unfreeze.

from datetime import timedelta

import pytest

from valuation.models import InventoryRecord, StockMovement
from valuation.services import ledger_service
from valuation.services.inventory_service import (
    FrozenRecordError,
    record_removal,
    record_restock,
    record_sale,
)
from valuation.services.ledger_service import InconsistentLedgerError


def _stock(store, product, days_ago):
    record_restock(store_id=store.id, product_id=product.id, quantity=10, unit_cost="4", occurred_at=days_ago(5))
    record_sale(store_id=store.id, product_id=product.id, quantity=3, occurred_at=days_ago(3))
    record_removal(store_id=store.id, product_id=product.id, quantity=1, reason="expired", occurred_at=days_ago(1))


def _tamper(db_session, store, product, quantity):
    record = db_session.query(InventoryRecord).filter_by(store_id=store.id, product_id=product.id).one()
    record.quantity = quantity
    db_session.commit()
    return record


class TestRecordMovement:
    """Append-only writes."""

    def test_zero_delta_is_rejected(self, db_session, store, product):
        with pytest.raises(ValueError):
            ledger_service.record_movement(
                store_id=store.id, product_id=product.id, quantity_before=4, quantity_after=4, action_type="sale"
            )

    def test_unknown_action_type_is_rejected(self, db_session, store, product):
        with pytest.raises(ValueError):
            ledger_service.record_movement(
                store_id=store.id, product_id=product.id, quantity_before=0, quantity_after=1, action_type="gift"
            )

    def test_returns_movement_id(self, db_session, store, product):
        movement_id = ledger_service.record_movement(
            store_id=store.id, product_id=product.id, quantity_before=0, quantity_after=4, action_type="adjustment"
        )

        assert isinstance(movement_id, int)
        assert db_session.get(StockMovement, movement_id).delta == 4

    def test_movement_delta_matches_quantities(self, db_session, store, product, days_ago):
        _stock(store, product, days_ago)
        for movement in db_session.query(StockMovement).all():
            assert movement.delta == movement.quantity_after - movement.quantity_before
            assert movement.delta != 0


class TestReplay:
    """Replaying SUM(delta) from zero reproduces the record."""

    def test_replay_matches_record(self, db_session, store, product, days_ago):
        _stock(store, product, days_ago)

        assert ledger_service.replay_quantity(store.id, product.id) == 6
        result = ledger_service.reconcile(store.id, product.id)
        assert result.is_consistent
        assert result.recorded_quantity == 6

    def test_list_movements_since_is_inclusive_and_ordered(self, db_session, store, product, days_ago):
        _stock(store, product, days_ago)

        everything = ledger_service.list_movements_since(store.id, product_id=product.id)
        assert [m.action_type for m in everything] == ["restock", "sale", "expiry_removal"]

        since = everything[1].occurred_at
        recent = ledger_service.list_movements_since(store.id, since, product_id=product.id)
        assert [m.action_type for m in recent] == ["sale", "expiry_removal"]

        assert ledger_service.list_movements_since(store.id, since + timedelta(days=5)) == []

    def test_missing_record_without_movements_is_consistent(self, db_session, store, product):
        result = ledger_service.reconcile(store.id, product.id)
        assert result.is_consistent
        assert result.replayed_quantity == 0


class TestFreeze:
    """A mismatch freezes the record until it is reconciled by hand."""

    def test_mismatch_freezes_and_blocks_writes(self, db_session, store, product, days_ago):
        _stock(store, product, days_ago)
        _tamper(db_session, store, product, 9)

        with pytest.raises(InconsistentLedgerError) as exc:
            ledger_service.reconcile(store.id, product.id)
        assert exc.value.product_id == product.id

        record = db_session.query(InventoryRecord).filter_by(store_id=store.id, product_id=product.id).one()
        assert record.is_frozen
        assert "quantity 9 != replayed 6" in record.frozen_reason

        with pytest.raises(FrozenRecordError):
            record_sale(store_id=store.id, product_id=product.id, quantity=1)

    def test_unfreeze_requires_consistency_or_resync(self, db_session, store, product, days_ago):
        _stock(store, product, days_ago)
        _tamper(db_session, store, product, 9)
        with pytest.raises(InconsistentLedgerError):
            ledger_service.reconcile(store.id, product.id)

        with pytest.raises(InconsistentLedgerError):
            ledger_service.unfreeze_record(store.id, product.id)

        record = ledger_service.unfreeze_record(store.id, product.id, resync_quantity=True)
        assert not record.is_frozen
        assert record.quantity == 6
        assert ledger_service.reconcile(store.id, product.id).is_consistent

        applied = record_sale(store_id=store.id, product_id=product.id, quantity=1)
        assert applied.quantity_after == 5

    def test_reconcile_store_freezes_only_mismatches(self, db_session, store, product, second_product, days_ago):
        _stock(store, product, days_ago)
        _stock(store, second_product, days_ago)
        _tamper(db_session, store, second_product, 2)

        results = ledger_service.reconcile_store(store.id)

        by_product = {r.product_id: r for r in results}
        assert by_product[product.id].is_consistent
        assert not by_product[second_product.id].is_consistent
        frozen = {
            r.product_id for r in db_session.query(InventoryRecord).filter_by(store_id=store.id, is_frozen=True)
        }
        assert frozen == {second_product.id}
