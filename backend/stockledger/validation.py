# Overview: Strict coercion of caller-supplied quantities, ids and dates.

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from .errors import ValidationError


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimals and scientific notation ("1e3") so a
    fractional quantity can never be truncated silently.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)", field=field
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def require_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be positive", field=field, value=number)
    return number


def require_non_negative_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} cannot be negative", field=field, value=number)
    return number


def require_id(value: Any, field: str) -> int:
    return require_positive_int(value, field)


def optional_id(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return require_positive_int(value, field)


def coerce_date(value: Any, field: str) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return date.fromisoformat(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)
    raise ValidationError(f"{field} must be a date", field=field)


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    stripped = value.strip()
    if len(stripped) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters", field=field)
    return stripped
