from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any

Scalar = str | int | float | bool


class ValidationError(ValueError):
    pass


def require(value: str | None, field: str) -> None:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required.")


def validate_enum(value: str | None, allowed: Iterable[str], field: str) -> None:
    if value is None:
        return
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")


def parse_date(value: str | None, field: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD.") from exc


def parse_datetime(value: str | None, field: str) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be ISO 8601.") from exc
    if parsed.tzinfo is None:
        # Stored timestamps without an offset are UTC.
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def validate_window(min_days: int, max_days: int) -> None:
    if min_days < 0 or max_days < 0:
        raise ValidationError("window offsets must be non-negative.")
    if min_days > max_days:
        raise ValidationError("min_days must not exceed max_days.")


def validate_properties(properties: Mapping[str, Any] | None) -> dict[str, Scalar]:
    """Flatten an event property bag to string keys and scalar values.

    ``None`` values are dropped; nested containers are rejected.
    """
    if properties is None:
        return {}
    if not isinstance(properties, Mapping):
        raise ValidationError("properties must be a mapping.")
    cleaned: dict[str, Scalar] = {}
    for key, value in properties.items():
        if not isinstance(key, str) or not key:
            raise ValidationError("property names must be non-empty strings.")
        if value is None:
            continue
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(f"property {key} must be a string, number or boolean.")
        cleaned[key] = value
    return cleaned
