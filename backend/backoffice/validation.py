from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import request

from .time_utils import parse_iso_datetime


# Largest amount accepted in minor units (999,999,999 = 9,999,999.99)
MAX_AMOUNT = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


def require_json() -> dict:
    """The request body as a JSON object, or ValidationError."""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer parsing: rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return result


def parse_amount(value: Any, field: str) -> int:
    """Money in minor units. Sign is left to the business rules."""
    return parse_int(value, field, maximum=MAX_AMOUNT)


def parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be true or false")


def parse_datetime(value: Any, field: str) -> datetime | None:
    """ISO-8601 string (or datetime) normalized to UTC; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    return parsed


def parse_string(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    """Stripped string; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None


def parse_items(payload: dict, field: str = "items") -> list[dict]:
    items = payload.get(field)
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise ValidationError(f"{field} must be a list of objects")
    return items


def date_range_args() -> tuple[datetime | None, datetime | None]:
    """start_date / end_date query arguments."""
    return (
        parse_datetime(request.args.get("start_date"), "start_date"),
        parse_datetime(request.args.get("end_date"), "end_date"),
    )
