"""
Wire-value conversion helpers.

Snapshots (audit ``oldValues``/``newValues`` and ``to_wire()`` outputs) use
JSON-safe values: datetimes as ISO-8601 strings, Decimals as plain strings,
enums as their values, sequences as lists.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


def decimal_to_wire(value: Decimal) -> str:
    """Canonical string for a Decimal: no exponent, no trailing zeros."""
    normalized = value.normalize()
    text = format(normalized, "f")
    return "0" if text in ("-0", "0") else text


def datetime_to_wire(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def to_wire(value: Any) -> Any:
    """Convert a domain value to its JSON-safe wire form."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return decimal_to_wire(value)
    if isinstance(value, datetime):
        return datetime_to_wire(value)
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    return value


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO string (or pass through a datetime) as tz-aware UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Cannot parse datetime from {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a Decimal from str/int/float/Decimal via its string form."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse decimal from {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def ensure_aware(value: datetime, name: str = "datetime") -> datetime:
    """Reject naive datetimes; SLA arithmetic is only defined on aware ones."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value
