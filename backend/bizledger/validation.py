from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from bizledger.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum monetary amount accepted on any field: 9,999,999,999.99
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT = Decimal("9999999999.99")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: wire keys clients are allowed to set (security boundary)
    - required_on_create: wire keys required for POST
    - aliases: wire key -> column key; nested objects arrive flattened as
      "stock.minStock" style keys
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    aliases: dict[str, str] = field(default_factory=dict)

    def column_for(self, key: str) -> str:
        return self.aliases.get(key, key)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def flatten_payload(payload: dict, prefix: str = "") -> dict:
    """{"stock": {"minStock": 5}} -> {"stock.minStock": 5}."""
    flat: dict = {}
    for key, value in payload.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_payload(value, prefix=f"{path}."))
        else:
            flat[path] = value
    return flat


def to_amount(value: Any, field_name: str, *, allow_negative: bool = False) -> Decimal:
    """
    Strict monetary coercion to a 2-place Decimal (half-up).

    Accepts ints, floats and numeric strings; rejects booleans, blanks and
    non-finite values.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(f"{field_name} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field_name} cannot exceed {MAX_AMOUNT:,}")
    return amount


def to_int(value: Any, field_name: str, *, minimum: int | None = None) -> int:
    """Strict integer coercion: rejects floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field_name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field_name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field_name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field_name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field_name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}")
    return result


def to_choice(value: Any, field_name: str, allowed) -> str:
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(f"{field_name} must be one of {sorted(allowed)}")
    return value


def to_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def require_fields(payload: dict, *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _coerce_value(col, key: str, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Numeric):
        return to_amount(value, key)

    if isinstance(coltype, Integer):
        return to_int(value, key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        dt = to_datetime(value, key)
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt

    # JSON list columns (tags, categories)
    if isinstance(coltype, JSON):
        if not isinstance(value, list):
            raise ValidationError(f"{key} must be a list")
        return [str(item).strip() for item in value if str(item).strip()]

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
    Returns a cleaned patch dict keyed by column key with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    flat = flatten_payload(payload)

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if flat.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in flat.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if policy.column_for(k) not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in flat.items():
        col_key = policy.column_for(k)
        col = cols[col_key]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[col_key] = None
            continue

        val = _coerce_value(col, k, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[col_key] = val

    return patch


def enforce_non_negative(patch: dict, *keys: str) -> None:
    """Integer stock thresholds and limits may never be negative."""
    for key in keys:
        value = patch.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rating(patch: dict, *keys: str) -> None:
    for key in keys:
        value = patch.get(key)
        if value is not None and not 1 <= value <= 5:
            raise ValidationError(f"{key} must be between 1 and 5")


def parse_pagination(args, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Read page/limit query params, clamped to sane bounds."""
    page = args.get("page", 1, type=int) or 1
    limit = args.get("limit", default_limit, type=int) or default_limit
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit


def parse_date_range(args) -> tuple[datetime | None, datetime | None]:
    """
    Read startDate/endDate query params.

    A date-only endDate ("2024-05-31") covers that whole day.
    """
    start = to_datetime(args.get("startDate") or None, "startDate")
    raw_end = (args.get("endDate") or "").strip()
    end = to_datetime(raw_end or None, "endDate")
    if end is not None and len(raw_end) == 10:
        end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
    if start is not None and end is not None and start > end:
        raise ValidationError("startDate must be on or before endDate")
    return start, end


def parse_bool_arg(args, name: str, default: bool = False) -> bool:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")
