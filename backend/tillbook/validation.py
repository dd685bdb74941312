from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .services.errors import InvalidArgument
from .time_utils import parse_iso_datetime


# Maximum price/cost: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise InvalidArgument(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise InvalidArgument(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise InvalidArgument(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise InvalidArgument(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise InvalidArgument(f"{col.key} must be an integer, not a decimal")
        raise InvalidArgument(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise InvalidArgument(f"{col.key} must be true or false")

    if isinstance(coltype, Numeric):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise InvalidArgument(f"{col.key} must be a number")
        return value

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise InvalidArgument(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise InvalidArgument(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise InvalidArgument(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidArgument("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise InvalidArgument(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise InvalidArgument(f"Field not allowed: {k}")
        if k not in cols:
            raise InvalidArgument(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise InvalidArgument(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise InvalidArgument(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise InvalidArgument(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_money(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        amount = patch[key]
        if amount < 0:
            raise InvalidArgument(f"{key} must be >= 0")
        if amount > MAX_PRICE_CENTS:
            raise InvalidArgument(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_money(patch, "price_cents")
    _check_money(patch, "cost_cents")
    if "stock" in patch and patch["stock"] is not None and patch["stock"] < 0:
        raise InvalidArgument("stock must be >= 0")


def require_positive_quantity(quantity: Any, *, field: str = "quantity") -> int:
    """Quantities are strict positive ints: no bools, floats or numeric strings."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidArgument(f"{field} must be a positive integer", details={field: quantity})
    if quantity <= 0:
        raise InvalidArgument(f"{field} must be a positive integer", details={field: quantity})
    return quantity
