from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from valuation.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.types import TypeEngine

from .money import to_decimal


# Upper bound for any money or cost input (prevents Numeric(18, x) overflow)
MAX_AMOUNT = Decimal("999999999999")


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for request bodies:
    - field_types: what clients are allowed to send, and how to coerce it
      (SQLAlchemy column types, so payloads coerce like the columns they feed)
    - required: fields that must be present
    - nullable: fields that may be sent as null
    """
    field_types: dict[str, TypeEngine]
    required: set[str] = field(default_factory=set)
    nullable: set[str] = field(default_factory=set)


def _coerce_value(key: str, coltype: TypeEngine, value: Any):
    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{key} must be an integer")

    # Decimals - money and cost. Strings preferred; floats go through repr
    if isinstance(coltype, Numeric):
        try:
            amount = to_decimal(value, field=key)
        except ValueError as e:
            raise ValidationError(str(e))
        if abs(amount) > MAX_AMOUNT:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")
        return amount

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
            return True
        if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
            return False
        raise ValidationError(f"{key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(*, payload: dict, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes incoming JSON against a policy.

    Unknown fields are rejected, types coerced, String(n) lengths enforced.
    Returns a cleaned dict with only allowed fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if f not in payload)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.field_types:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        coltype = policy.field_types[k]

        if raw is None:
            if k in policy.required or k not in policy.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, coltype, raw)

        if isinstance(coltype, (String, Text)) and k in policy.required:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(coltype, String) and coltype.length and isinstance(val, str):
            if len(val) > coltype.length:
                raise ValidationError(f"{k} exceeds max length {coltype.length}")

        patch[k] = val

    return patch


def require_positive(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None and patch[key] <= 0:
        raise ValidationError(f"{key} must be > 0")


def require_non_negative(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None and patch[key] < 0:
        raise ValidationError(f"{key} must be >= 0")


# quantity 0 is accepted and is a no-op downstream (nothing is recorded)

def enforce_rules_restock(patch: dict) -> None:
    require_non_negative(patch, "quantity")
    require_positive(patch, "unit_cost")


def enforce_rules_sale(patch: dict) -> None:
    require_non_negative(patch, "quantity")
    require_non_negative(patch, "unit_price")


def enforce_rules_refund(patch: dict) -> None:
    require_non_negative(patch, "quantity")
    require_non_negative(patch, "original_unit_cost")
    require_non_negative(patch, "unit_price")


def enforce_rules_removal(patch: dict) -> None:
    require_non_negative(patch, "quantity")
    require_non_negative(patch, "loss_amount")


def enforce_rules_swap(patch: dict) -> None:
    require_positive(patch, "quantity")
    require_positive(patch, "issued_quantity")
    require_non_negative(patch, "unit_price")
