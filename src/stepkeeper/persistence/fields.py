"""Field-level encode/decode helpers for persisted records.

Records are encoded explicitly, one field at a time, into JSON-safe dicts.
Every decoder raises :class:`DeserializationError` on a type mismatch so
the owning record can fall back to its defaults.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from stepkeeper.core.exceptions import DeserializationError

SCHEMA_VERSION_FIELD = "schemaVersion"


def read_int(payload: dict[str, Any], name: str, default: int = 0, *, minimum: int | None = None) -> int:
    value = payload.get(name, default)
    # bool is an int subclass; a persisted true/false is never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        raise DeserializationError(f"field {name!r} must be an integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        raise DeserializationError(f"field {name!r} must be >= {minimum}, got {value}")
    return value


def read_str(payload: dict[str, Any], name: str, default: str = "") -> str:
    value = payload.get(name, default)
    if not isinstance(value, str):
        raise DeserializationError(f"field {name!r} must be a string, got {type(value).__name__}")
    return value


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def read_datetime(payload: dict[str, Any], name: str) -> datetime | None:
    value = payload.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise DeserializationError(f"field {name!r} must be an ISO timestamp string")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise DeserializationError(f"field {name!r}: {e}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_date(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def read_date(payload: dict[str, Any], name: str) -> date | None:
    value = payload.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise DeserializationError(f"field {name!r} must be an ISO date string")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise DeserializationError(f"field {name!r}: {e}") from e
