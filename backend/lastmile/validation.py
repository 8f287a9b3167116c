from __future__ import annotations
from datetime import datetime
from lastmile.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., deleting a client with orders)."""


class NotFoundError(LookupError):
    """404-level: route, stop, order, client or token unknown."""


class InvalidStateError(ValueError):
    """
    400-level: the entity is not in the source state the command requires.

    The message is a human-readable reason suitable for the API response.
    """


class ExpiredError(PermissionError):
    """410-level: the customer link is past its expiration."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_float(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be a number")
    raise ValidationError(f"{field} must be a number")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Float):
        return coerce_float(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = [f for f in sorted(required) if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

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


def require_id_list(value: Any, field: str) -> list[int]:
    """
    Parse a JSON list of ids, keeping caller order and dropping repeats.

    Stop order is meaningful, so the first occurrence of an id wins.
    """
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list of ids")
    seen: set[int] = set()
    ids: list[int] = []
    for raw in value:
        item = coerce_int(raw, field)
        if item in seen:
            continue
        seen.add(item)
        ids.append(item)
    return ids


def require_coordinates(payload: dict) -> tuple[float, float]:
    """Accepts {lat, lng} or {latitude, longitude}; enforces WGS84 bounds."""
    lat_raw = payload.get("lat", payload.get("latitude"))
    lng_raw = payload.get("lng", payload.get("longitude"))
    if lat_raw is None or lng_raw is None:
        raise ValidationError("lat and lng are required")
    lat = coerce_float(lat_raw, "lat")
    lng = coerce_float(lng_raw, "lng")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError("lat must be between -90 and 90")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError("lng must be between -180 and 180")
    return lat, lng


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return require_text(value, field, max_length=max_length)


def enforce_amount_cents(value: int, field: str) -> int:
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return value
