"""Composite keys joining schedule slots to achievement records.

A key has the shape ``YYYY-MM-DD_dayN_hourH``. Slots and achievements carry no
foreign key; they are associated purely by key equality, so every call site
must build keys through :func:`make_key`.
"""

from __future__ import annotations

from typing import Any, NamedTuple, Optional

from .calendar_dates import format_date, normalize, try_normalize, week_identifier

DAY_KEYS = tuple(f"day{index}" for index in range(1, 8))
HOUR_KEYS = tuple(f"hour{hour}" for hour in range(9, 23))
KEY_SEPARATOR = "_"


class InvalidKeyError(ValueError):
    """Raised when a composite key cannot be built or parsed."""


class ParsedKey(NamedTuple):
    date_str: str
    day_key: str
    hour_key: str


def is_day_key(value: Any) -> bool:
    return isinstance(value, str) and value in DAY_KEYS


def is_hour_key(value: Any) -> bool:
    return isinstance(value, str) and value in HOUR_KEYS


def day_index(day_key: str) -> int:
    """Zero-based offset of ``day_key`` from Monday."""
    if not is_day_key(day_key):
        raise InvalidKeyError(f"Unknown day key: {day_key!r}")
    return DAY_KEYS.index(day_key)


def make_key(value: Any, day_key: Optional[str], hour_key: Optional[str]) -> str:
    if value is None or value == "" or not day_key or not hour_key:
        raise InvalidKeyError(
            f"Composite key requires date, day and hour (got {value!r}, {day_key!r}, {hour_key!r})"
        )
    return KEY_SEPARATOR.join((format_date(normalize(value)), day_key, hour_key))


def parse_key(key: str) -> ParsedKey:
    if not isinstance(key, str):
        raise InvalidKeyError(f"Composite key must be a string, got {type(key).__name__}")
    parts = key.split(KEY_SEPARATOR)
    if len(parts) < 3 or not all(parts[:3]):
        raise InvalidKeyError(f"Invalid composite key: {key!r}")
    return ParsedKey(parts[0], parts[1], parts[2])


def week_id_for_key(key: str) -> str:
    parsed = parse_key(key)
    day = try_normalize(parsed.date_str)
    if day is None:
        raise InvalidKeyError(f"Composite key has an invalid date: {key!r}")
    return week_identifier(day)


__all__ = [
    "DAY_KEYS",
    "HOUR_KEYS",
    "InvalidKeyError",
    "ParsedKey",
    "day_index",
    "is_day_key",
    "is_hour_key",
    "make_key",
    "parse_key",
    "week_id_for_key",
]
