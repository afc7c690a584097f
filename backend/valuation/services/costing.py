# Overview: Weighted-average costing engine; pure computation with no database access.

"""
Costing Invariants (authoritative)

- Cost basis is the weighted-average unit cost per (store, product).
- RESTOCK:   avg' = (q * avg + d * unit_cost) / (q + d)
- SALE:      avg unchanged; total drops by |d| * avg. The avg at movement time
             is the consumed unit cost and must be snapshotted by the caller.
- REFUND:    total rises by d * original sale unit cost. The average is only
             re-derived when that moves it materially; otherwise the record is
             re-anchored to q * avg and the dropped value is reported as
             absorbed_value.
- REMOVAL:   damage/expiry/shrinkage write-off. avg unchanged, total drops by
             |d| * avg, and a revaluation with lossAmount is emitted.
- ADJUST:    count correction valued at the current avg.
- Nothing here rounds. Quantization happens once, in quantize_state(), when
  the caller persists the result.
- A record that empties out writes off any residual cost value so an empty
  shelf never carries value.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..money import ZERO, COST_QUANTUM, money_quantum, quantize_cost, to_decimal


ACTION_SALE = "sale"
ACTION_REFUND = "refund"
ACTION_RESTOCK = "restock"
ACTION_DAMAGE_REMOVAL = "damage_removal"
ACTION_EXPIRY_REMOVAL = "expiry_removal"
ACTION_ADJUSTMENT = "adjustment"
ACTION_SWAP = "swap"

WRITE_OFF_ACTIONS = (ACTION_DAMAGE_REMOVAL, ACTION_EXPIRY_REMOVAL)


class InventoryError(ValueError):
    """Request-path rejection of an inventory mutation (HTTP 400)."""


class InsufficientStockError(InventoryError):
    """A sale or removal asked for more units than are on hand. Never clamped."""

    def __init__(self, requested: int, available: int):
        super().__init__(f"insufficient stock: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class InvalidCostError(InventoryError):
    """Restock with a missing or non-positive unit cost."""


@dataclass(frozen=True)
class CostThresholds:
    """When is a cost change worth an event (and, for refunds, a new average)."""
    absolute: Decimal = Decimal("0.01")
    relative: Decimal = Decimal("0.005")

    def differs_materially(self, new: Decimal, old: Decimal) -> bool:
        diff = abs(new - old)
        if diff > self.absolute:
            return True
        if old > 0 and diff / old > self.relative:
            return True
        return False


DEFAULT_THRESHOLDS = CostThresholds()


@dataclass(frozen=True)
class InventoryState:
    quantity: int
    avg_cost: Decimal
    total_cost_value: Decimal

    @classmethod
    def empty(cls) -> "InventoryState":
        return cls(quantity=0, avg_cost=ZERO, total_cost_value=ZERO)

    @property
    def is_uncosted(self) -> bool:
        return self.quantity == 0 and self.avg_cost == 0


@dataclass(frozen=True)
class Movement:
    """
    An incoming quantity change.

    unit_cost means the restock cost for restocks and the original sale's
    unit cost for refunds; it is ignored for everything else.
    """
    action_type: str
    delta: int
    unit_cost: Decimal | None = None
    reason: str | None = None
    loss_amount: Decimal | None = None


@dataclass(frozen=True)
class PriceChange:
    old_cost: Decimal
    new_cost: Decimal
    new_avg_cost: Decimal
    trigger: str


@dataclass(frozen=True)
class Revaluation:
    quantity_before: int
    quantity_after: int
    revalued_quantity: int
    avg_cost_before: Decimal
    avg_cost_after: Decimal
    total_cost_before: Decimal
    total_cost_after: Decimal
    delta_value: Decimal
    loss_amount: Decimal | None
    reason: str | None


@dataclass(frozen=True)
class CostingResult:
    state: InventoryState
    unit_cost: Decimal | None
    events: tuple = ()
    is_noop: bool = False
    # Value dropped when a refund is re-anchored to q * avg (d * original - d * avg)
    absorbed_value: Decimal = ZERO

    @property
    def price_changes(self) -> list[PriceChange]:
        return [e for e in self.events if isinstance(e, PriceChange)]

    @property
    def revaluations(self) -> list[Revaluation]:
        return [e for e in self.events if isinstance(e, Revaluation)]


def apply_movement(
    state: InventoryState,
    movement: Movement,
    thresholds: CostThresholds = DEFAULT_THRESHOLDS,
) -> CostingResult:
    """
    Apply one movement to a cost-basis state.

    Returns the new state, the per-unit cost basis the movement used, and
    any price-change / revaluation events. Raises InsufficientStockError or
    InvalidCostError without producing a result.
    """
    delta = movement.delta
    if delta == 0:
        return CostingResult(state=state, unit_cost=None, is_noop=True)

    if delta < 0 and state.quantity + delta < 0:
        raise InsufficientStockError(requested=-delta, available=state.quantity)

    action = movement.action_type
    if action == ACTION_RESTOCK:
        if delta < 0:
            raise ValueError("restock must increase quantity")
        return _apply_restock(state, movement, thresholds)

    if action == ACTION_SALE or (action == ACTION_SWAP and delta < 0):
        if delta > 0:
            raise ValueError("sale must decrease quantity")
        return _apply_consumption(state, movement)

    if action == ACTION_REFUND or (action == ACTION_SWAP and delta > 0):
        if delta < 0:
            raise ValueError("refund must increase quantity")
        return _apply_refund(state, movement, thresholds)

    if action in WRITE_OFF_ACTIONS:
        if delta > 0:
            raise ValueError("removal must decrease quantity")
        return _apply_write_off(state, movement)

    if action == ACTION_ADJUSTMENT:
        return _apply_adjustment(state, movement)

    raise ValueError(f"unknown action_type: {action}")


def _settle_total(quantity: int, total: Decimal) -> Decimal:
    # An empty record carries no value; residual rounding is written off here.
    return total if quantity > 0 else ZERO


def _apply_restock(state: InventoryState, movement: Movement, thresholds: CostThresholds) -> CostingResult:
    if movement.unit_cost is None:
        raise InvalidCostError("unit_cost is required for restock")
    unit_cost = to_decimal(movement.unit_cost, field="unit_cost")
    if unit_cost <= 0:
        raise InvalidCostError("unit_cost must be > 0 for restock")

    quantity = state.quantity + movement.delta
    total = state.total_cost_value + movement.delta * unit_cost
    avg = total / quantity

    events = []
    if not state.is_uncosted and thresholds.differs_materially(unit_cost, state.avg_cost):
        events.append(
            PriceChange(
                old_cost=state.avg_cost,
                new_cost=unit_cost,
                new_avg_cost=avg,
                trigger=movement.action_type,
            )
        )

    return CostingResult(
        state=InventoryState(quantity=quantity, avg_cost=avg, total_cost_value=total),
        unit_cost=unit_cost,
        events=tuple(events),
    )


def _apply_consumption(state: InventoryState, movement: Movement) -> CostingResult:
    consumed = -movement.delta
    quantity = state.quantity - consumed
    total = _settle_total(quantity, state.total_cost_value - consumed * state.avg_cost)
    return CostingResult(
        state=InventoryState(quantity=quantity, avg_cost=state.avg_cost, total_cost_value=total),
        unit_cost=state.avg_cost,
    )


def _apply_refund(state: InventoryState, movement: Movement, thresholds: CostThresholds) -> CostingResult:
    if movement.unit_cost is None:
        raise InvalidCostError("original unit_cost is required for refund")
    original_cost = to_decimal(movement.unit_cost, field="unit_cost")
    if original_cost < 0:
        raise InvalidCostError("original unit_cost must be >= 0")

    quantity = state.quantity + movement.delta
    total = state.total_cost_value + movement.delta * original_cost
    candidate_avg = total / quantity

    events = []
    absorbed = ZERO
    if state.is_uncosted:
        avg = candidate_avg
    elif thresholds.differs_materially(candidate_avg, state.avg_cost):
        avg = candidate_avg
        events.append(
            PriceChange(
                old_cost=state.avg_cost,
                new_cost=candidate_avg,
                new_avg_cost=candidate_avg,
                trigger=movement.action_type,
            )
        )
    else:
        avg = state.avg_cost
        anchored = quantity * avg
        absorbed = total - anchored
        total = anchored

    return CostingResult(
        state=InventoryState(quantity=quantity, avg_cost=avg, total_cost_value=total),
        unit_cost=original_cost,
        events=tuple(events),
        absorbed_value=absorbed,
    )


def _write_off_revaluation(
    state: InventoryState,
    after: InventoryState,
    *,
    delta_value: Decimal,
    loss_amount: Decimal | None,
    reason: str | None,
    revalued_quantity: int,
) -> Revaluation:
    return Revaluation(
        quantity_before=state.quantity,
        quantity_after=after.quantity,
        revalued_quantity=revalued_quantity,
        avg_cost_before=state.avg_cost,
        avg_cost_after=after.avg_cost,
        total_cost_before=state.total_cost_value,
        total_cost_after=after.total_cost_value,
        delta_value=delta_value,
        loss_amount=loss_amount,
        reason=reason,
    )


def _resolve_loss(movement: Movement, value: Decimal) -> Decimal:
    if movement.loss_amount is None:
        return value
    loss = to_decimal(movement.loss_amount, field="loss_amount")
    if loss < 0:
        raise ValueError("loss_amount must be >= 0")
    return loss


def _apply_write_off(state: InventoryState, movement: Movement) -> CostingResult:
    removed = -movement.delta
    value = removed * state.avg_cost
    quantity = state.quantity - removed
    after = InventoryState(
        quantity=quantity,
        avg_cost=state.avg_cost,
        total_cost_value=_settle_total(quantity, state.total_cost_value - value),
    )
    event = _write_off_revaluation(
        state,
        after,
        delta_value=-value,
        loss_amount=_resolve_loss(movement, value),
        reason=movement.reason,
        revalued_quantity=removed,
    )
    return CostingResult(state=after, unit_cost=state.avg_cost, events=(event,))


def _apply_adjustment(state: InventoryState, movement: Movement) -> CostingResult:
    value = movement.delta * state.avg_cost
    quantity = state.quantity + movement.delta
    after = InventoryState(
        quantity=quantity,
        avg_cost=state.avg_cost,
        total_cost_value=_settle_total(quantity, state.total_cost_value + value),
    )
    loss = _resolve_loss(movement, -value) if movement.delta < 0 else None
    event = _write_off_revaluation(
        state,
        after,
        delta_value=value,
        loss_amount=loss,
        reason=movement.reason,
        revalued_quantity=abs(movement.delta),
    )
    return CostingResult(state=after, unit_cost=state.avg_cost, events=(event,))


def quantize_state(state: InventoryState) -> InventoryState:
    """Round a computed state to storage precision (the only rounding step)."""
    return InventoryState(
        quantity=state.quantity,
        avg_cost=quantize_cost(state.avg_cost),
        total_cost_value=quantize_cost(state.total_cost_value),
    )


def cost_value_tolerance(quantity: int, minor_units: int = 2) -> Decimal:
    """One minor unit, plus the representational error of a stored average."""
    return money_quantum(minor_units) + Decimal(quantity) * COST_QUANTUM / 2


def is_cost_value_consistent(state: InventoryState, minor_units: int = 2) -> bool:
    drift = abs(state.total_cost_value - state.quantity * state.avg_cost)
    return drift <= cost_value_tolerance(state.quantity, minor_units)
