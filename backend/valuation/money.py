# Overview: Decimal helpers shared by costing, persistence and serializers.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

# Cost basis (avg cost, unit cost, cost values) keeps sub-minor-unit precision
COST_PLACES = 6
COST_QUANTUM = Decimal(1).scaleb(-COST_PLACES)

RATIO_QUANTUM = Decimal("0.0001")

ZERO = Decimal("0")


def to_decimal(value, *, field: str = "value") -> Decimal:
    """Coerce int/str/Decimal (and float via str) into Decimal."""
    if value is None:
        raise ValueError(f"{field} is required")
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise ValueError(f"{field} must be a number")
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def money_quantum(minor_units: int = 2) -> Decimal:
    return Decimal(1).scaleb(-minor_units)


def quantize_money(value: Decimal, minor_units: int = 2) -> Decimal:
    return Decimal(value).quantize(money_quantum(minor_units), rounding=ROUND_HALF_UP)


def quantize_cost(value: Decimal) -> Decimal:
    return Decimal(value).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_ratio(value: Decimal) -> Decimal:
    return Decimal(value).quantize(RATIO_QUANTUM, rounding=ROUND_HALF_UP)


def decimal_str(value) -> str | None:
    """Serialize a Decimal for JSON without exponent notation."""
    if value is None:
        return None
    return format(Decimal(value), "f")
