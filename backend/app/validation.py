from __future__ import annotations
import json
import math

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Upper bound for prices, costs and stock quantities; keeps junk input
# (1e308, accidental extra digits) out of the float columns.
MAX_AMOUNT = 999_999_999


class ValidationError(ValueError):
    """Bad client input; routes answer 400."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate email)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which request keys a route accepts for a model.

    writable_fields is the allowlist (anything else is rejected, so clients
    cannot set ids, sell_count or timestamps); required_on_create lists the
    keys a POST must carry.
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_number(key: str, value: Any) -> float:
    """Accept ints, floats and numeric strings; reject bools, NaN and infinities."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be a number")
        try:
            number = float(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be a number")
    else:
        raise ValidationError(f"{key} must be a number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def coerce_int(key: str, value: Any) -> int:
    """Whole numbers only: cart quantities and ids never accept 1.5 or 1e3."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Float):
        return coerce_number(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

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
    Check a request body against the policy and coerce each value to its
    column type (Float columns take numeric strings, String columns are
    stripped and length-checked, NOT NULL columns refuse null and blank).
    partial=False also enforces required_on_create. Returns the patch.

    Keys that are in the allowlist but not model columns (e.g. a product's
    "ingredients" list) are passed through untouched for the caller to parse.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        if col is None:
            patch[k] = raw
            continue

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _require_range(patch: dict, key: str, *, allow_zero: bool = True) -> None:
    if key not in patch or patch[key] is None:
        return
    value = patch[key]
    if allow_zero and value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if not allow_zero and value <= 0:
        raise ValidationError(f"{key} must be > 0")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")


def enforce_rules_raw_material(patch: dict) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    _require_range(patch, "quantity_available")
    _require_range(patch, "cost_per_unit")
    _require_range(patch, "low_stock_threshold")


def enforce_rules_product(patch: dict) -> None:
    _require_range(patch, "selling_price")


def parse_ingredient_lines(raw: Any) -> list[tuple[int, float]]:
    """
    Normalize an ingredients payload into [(raw_material_id, quantity_used)].

    Accepts a list of {"raw_material_id", "quantity_used"} objects, or the
    same list JSON-encoded as a string (multipart form submissions send it
    that way). None/empty means "no ingredients". The same raw material may
    appear only once per payload.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("Invalid ingredients payload.")
    if not isinstance(raw, list):
        raise ValidationError("Ingredients must be an array.")

    seen: set[int] = set()
    lines: list[tuple[int, float]] = []
    for item in raw:
        if not isinstance(item, dict) or item.get("raw_material_id") in (None, ""):
            raise ValidationError("Each ingredient must include raw_material_id.")
        material_id = coerce_int("raw_material_id", item["raw_material_id"])
        try:
            quantity_used = coerce_number("quantity_used", item.get("quantity_used"))
        except ValidationError:
            raise ValidationError("Each ingredient quantity_used must be greater than 0.")
        if quantity_used <= 0:
            raise ValidationError("Each ingredient quantity_used must be greater than 0.")
        if quantity_used > MAX_AMOUNT:
            raise ValidationError(f"quantity_used cannot exceed {MAX_AMOUNT}")
        if material_id in seen:
            raise ValidationError("Duplicate raw material in ingredients.")
        seen.add(material_id)
        lines.append((material_id, quantity_used))
    return lines
