from __future__ import annotations
from datetime import date, datetime
from fleetledger.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


class ValidationError(ValueError):
    """400-level input problem, raised before any write."""


class NotFoundError(ValueError):
    """404-level: a referenced entity does not exist."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate waybill number)."""


class PeriodLockedError(ValueError):
    """409-level: the target date lies inside a sealed accounting period."""

    def __init__(self, period: str, message: str | None = None):
        self.period = period
        super().__init__(message or f"Period {period} is closed")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - nested_fields: keys holding lists of child rows, validated separately
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    nested_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or '.' in stripped or 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Whole-number floats are accepted for odometer readings coming from spreadsheets
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise ValidationError(f"{col.key} must be an integer")

    # Quantities, rates and liters
    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip().replace(",", "."))
            except ValueError:
                raise ValidationError(f"{col.key} must be a number")
        raise ValidationError(f"{col.key} must be a number")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Business dates ("YYYY-MM-DD")
    if isinstance(coltype, Date):
        if isinstance(value, (date, str)):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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
    Nested list fields are passed through untouched for the caller to validate.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    nested = policy.nested_fields or set()
    if not partial:
        missing = [f for f in sorted(required) if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in nested:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in nested:
            if raw is not None and not isinstance(raw, list):
                raise ValidationError(f"{k} must be a list")
            patch[k] = raw or []
            continue

        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_segments(segments: list[dict]) -> None:
    for index, segment in enumerate(segments):
        distance = segment.get("distance_km")
        if distance is None or distance < 0:
            raise ValidationError(f"segments[{index}].distance_km must be >= 0")


def enforce_rules_movement_lines(lines: list[dict]) -> None:
    if not lines:
        raise ValidationError("A stock movement needs at least one line")
    for index, line in enumerate(lines):
        if line.get("stock_item_id") is None:
            raise ValidationError(f"lines[{index}].stock_item_id is required")
        quantity = line.get("quantity")
        if quantity is None or quantity == 0:
            raise ValidationError(f"lines[{index}].quantity must be non-zero")
        unit_price = line.get("unit_price")
        if unit_price is not None and unit_price < 0:
            raise ValidationError(f"lines[{index}].unit_price must be >= 0")


def enforce_rules_waybill(patch: dict) -> None:
    """Sanity rules that hold for drafts too; posting adds stricter ones."""
    odometer_start = patch.get("odometer_start")
    if odometer_start is not None and odometer_start < 0:
        raise ValidationError("odometer_start must be >= 0")
    fuel_filled = patch.get("fuel_filled")
    if fuel_filled is not None and fuel_filled < 0:
        raise ValidationError("fuel_filled must be >= 0")
    valid_from = patch.get("valid_from")
    valid_to = patch.get("valid_to")
    if valid_from is not None and valid_to is not None and valid_to < valid_from:
        raise ValidationError("valid_to must not be before valid_from")
