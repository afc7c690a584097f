# Overview: Pytest coverage for the pure weighted-average costing engine.

from decimal import Decimal

import pytest

from valuation.services.costing import (
    ACTION_ADJUSTMENT,
    ACTION_DAMAGE_REMOVAL,
    ACTION_EXPIRY_REMOVAL,
    ACTION_REFUND,
    ACTION_RESTOCK,
    ACTION_SALE,
    ACTION_SWAP,
    CostThresholds,
    InsufficientStockError,
    InvalidCostError,
    InventoryState,
    Movement,
    PriceChange,
    Revaluation,
    apply_movement,
    is_cost_value_consistent,
    quantize_state,
)


def state(quantity, avg_cost, total=None):
    avg = Decimal(avg_cost)
    return InventoryState(
        quantity=quantity,
        avg_cost=avg,
        total_cost_value=Decimal(total) if total is not None else avg * quantity,
    )


class TestRestock:
    """Restocks fold the incoming cost into the weighted average."""

    def test_first_receipt_sets_average_without_event(self):
        result = apply_movement(InventoryState.empty(), Movement(ACTION_RESTOCK, 10, unit_cost=Decimal("50")))

        assert result.state.quantity == 10
        assert result.state.avg_cost == Decimal("50")
        assert result.state.total_cost_value == Decimal("500")
        assert result.unit_cost == Decimal("50")
        assert result.events == ()

    def test_weighted_average_and_price_change(self):
        result = apply_movement(state(10, "50"), Movement(ACTION_RESTOCK, 10, unit_cost=Decimal("60")))

        assert result.state.quantity == 20
        assert result.state.avg_cost == Decimal("55")
        assert result.state.total_cost_value == Decimal("1100")

        [event] = result.price_changes
        assert event.old_cost == Decimal("50")
        assert event.new_cost == Decimal("60")
        assert event.new_avg_cost == Decimal("55")
        assert event.trigger == ACTION_RESTOCK

    def test_immaterial_cost_difference_emits_nothing(self):
        result = apply_movement(state(10, "50"), Movement(ACTION_RESTOCK, 10, unit_cost=Decimal("50.001")))
        assert result.events == ()

    @pytest.mark.parametrize("unit_cost", [None, Decimal("0"), Decimal("-1")])
    def test_rejects_missing_or_non_positive_cost(self, unit_cost):
        with pytest.raises(InvalidCostError):
            apply_movement(state(5, "10"), Movement(ACTION_RESTOCK, 5, unit_cost=unit_cost))

    def test_negative_delta_is_rejected(self):
        with pytest.raises(ValueError):
            apply_movement(state(5, "10"), Movement(ACTION_RESTOCK, -1, unit_cost=Decimal("10")))


class TestConsumption:
    """Sales and swap-out legs consume stock at the current average."""

    def test_sale_keeps_average_and_returns_consumed_cost(self):
        result = apply_movement(state(10, "55"), Movement(ACTION_SALE, -4))

        assert result.state.quantity == 6
        assert result.state.avg_cost == Decimal("55")
        assert result.state.total_cost_value == Decimal("330")
        assert result.unit_cost == Decimal("55")
        assert result.events == ()

    def test_selling_out_clears_residual_value(self):
        result = apply_movement(state(3, "3.333333", "10"), Movement(ACTION_SALE, -3))

        assert result.state.quantity == 0
        assert result.state.total_cost_value == Decimal("0")

    def test_over_sale_raises_and_reports_quantities(self):
        with pytest.raises(InsufficientStockError) as exc:
            apply_movement(state(2, "10"), Movement(ACTION_SALE, -3))

        assert exc.value.requested == 3
        assert exc.value.available == 2

    def test_swap_out_behaves_like_sale(self):
        result = apply_movement(state(4, "12"), Movement(ACTION_SWAP, -1))
        assert result.state.quantity == 3
        assert result.unit_cost == Decimal("12")

    def test_zero_delta_is_noop(self):
        before = state(4, "12")
        result = apply_movement(before, Movement(ACTION_SALE, 0))

        assert result.is_noop
        assert result.state == before
        assert result.events == ()


class TestRefund:
    """Refunds restore cost at the original sale's unit cost."""

    def test_material_difference_moves_average(self):
        result = apply_movement(state(8, "50"), Movement(ACTION_REFUND, 2, unit_cost=Decimal("60")))

        assert result.state.quantity == 10
        assert result.state.total_cost_value == Decimal("520")
        assert result.state.avg_cost == Decimal("52")
        [event] = result.price_changes
        assert event.trigger == ACTION_REFUND

    def test_same_cost_keeps_average(self):
        result = apply_movement(state(8, "50"), Movement(ACTION_REFUND, 2, unit_cost=Decimal("50")))

        assert result.state.avg_cost == Decimal("50")
        assert result.state.total_cost_value == Decimal("500")
        assert result.events == ()
        assert result.absorbed_value == Decimal("0")

    def test_immaterial_difference_reanchors_total(self):
        result = apply_movement(state(100, "50"), Movement(ACTION_REFUND, 1, unit_cost=Decimal("50.5")))

        assert result.state.avg_cost == Decimal("50")
        assert result.state.total_cost_value == Decimal("5050")
        assert result.events == ()
        # 1 unit at 50.5 folded in at 50
        assert result.absorbed_value == Decimal("0.5")

    def test_refund_into_empty_record_adopts_original_cost(self):
        result = apply_movement(InventoryState.empty(), Movement(ACTION_REFUND, 2, unit_cost=Decimal("40")))

        assert result.state.avg_cost == Decimal("40")
        assert result.state.total_cost_value == Decimal("80")
        assert result.events == ()

    def test_requires_original_cost(self):
        with pytest.raises(InvalidCostError):
            apply_movement(state(1, "10"), Movement(ACTION_REFUND, 1))


class TestWriteOff:
    """Damage / expiry removals and count adjustments."""

    def test_damage_emits_loss_revaluation(self):
        result = apply_movement(state(10, "50"), Movement(ACTION_DAMAGE_REMOVAL, -1, reason="damaged"))

        assert result.state.quantity == 9
        assert result.state.avg_cost == Decimal("50")
        assert result.state.total_cost_value == Decimal("450")
        [event] = result.revaluations
        assert isinstance(event, Revaluation)
        assert event.delta_value == Decimal("-50")
        assert event.loss_amount == Decimal("50")
        assert event.revalued_quantity == 1
        assert event.reason == "damaged"

    def test_caller_loss_amount_overrides_value(self):
        result = apply_movement(
            state(10, "50"),
            Movement(ACTION_EXPIRY_REMOVAL, -2, reason="expired", loss_amount=Decimal("20")),
        )
        [event] = result.revaluations
        assert event.delta_value == Decimal("-100")
        assert event.loss_amount == Decimal("20")

    def test_removal_cannot_increase_stock(self):
        with pytest.raises(ValueError):
            apply_movement(state(10, "50"), Movement(ACTION_DAMAGE_REMOVAL, 1))

    def test_over_removal_raises(self):
        with pytest.raises(InsufficientStockError):
            apply_movement(state(1, "50"), Movement(ACTION_DAMAGE_REMOVAL, -2))

    def test_positive_adjustment_has_no_loss(self):
        result = apply_movement(state(10, "5"), Movement(ACTION_ADJUSTMENT, 3, reason="count_correction"))

        assert result.state.quantity == 13
        assert result.state.total_cost_value == Decimal("65")
        [event] = result.revaluations
        assert event.delta_value == Decimal("15")
        assert event.loss_amount is None

    def test_negative_adjustment_carries_loss(self):
        result = apply_movement(state(10, "5"), Movement(ACTION_ADJUSTMENT, -4, reason="shrinkage"))
        [event] = result.revaluations
        assert event.loss_amount == Decimal("20")


def test_unknown_action_is_rejected():
    with pytest.raises(ValueError):
        apply_movement(state(1, "1"), Movement("teleport", 1))


def test_thresholds_absolute_or_relative():
    thresholds = CostThresholds(absolute=Decimal("0.01"), relative=Decimal("0.005"))

    assert thresholds.differs_materially(Decimal("1.02"), Decimal("1.00"))
    assert not thresholds.differs_materially(Decimal("1.005"), Decimal("1.00"))
    # 0.006 on 1.00 is under the absolute threshold but over 0.5%
    assert thresholds.differs_materially(Decimal("1.006"), Decimal("1.00"))
    assert not thresholds.differs_materially(Decimal("100.004"), Decimal("100"))


def test_quantized_state_stays_consistent_over_mixed_movements():
    current = InventoryState.empty()
    movements = [
        Movement(ACTION_RESTOCK, 3, unit_cost=Decimal("1")),
        Movement(ACTION_RESTOCK, 7, unit_cost=Decimal("1.37")),
        Movement(ACTION_SALE, -4),
        Movement(ACTION_RESTOCK, 11, unit_cost=Decimal("2.19")),
        Movement(ACTION_REFUND, 2, unit_cost=Decimal("1.259")),
        Movement(ACTION_DAMAGE_REMOVAL, -5, reason="damaged"),
        Movement(ACTION_ADJUSTMENT, -1, reason="count_correction"),
        Movement(ACTION_SALE, -9),
    ]
    for movement in movements:
        result = apply_movement(current, movement)
        current = quantize_state(result.state)
        assert is_cost_value_consistent(current)
        assert current.avg_cost == current.avg_cost.quantize(Decimal("0.000001"))

    assert current.quantity == 4


def test_restock_cost_jump_yields_price_change():
    result = apply_movement(state(1, "1"), Movement(ACTION_RESTOCK, 1, unit_cost=Decimal("3")))
    assert isinstance(result.events[0], PriceChange)
