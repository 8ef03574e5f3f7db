"""Calendar normalisation and week arithmetic shared by every planner module.

Dates arrive in several shapes: ISO strings written by older clients,
``date``/``datetime`` objects created in-process, and document-store
timestamps (``{"seconds": ..., "nanoseconds": ...}``) or bare epoch numbers.
Each raw value is first classified into a tagged ``DateInput`` variant and
then collapsed into a plain ``datetime.date`` in the configured local zone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Literal, Mapping, Optional, Union

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_settings
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, int, float, Mapping[str, Any], "DateInput", None]


@dataclass(frozen=True)
class StringDate:
    value: str
    kind: Literal["string"] = "string"


@dataclass(frozen=True)
class NativeDate:
    value: date
    kind: Literal["native"] = "native"


@dataclass(frozen=True)
class EpochTimestamp:
    seconds: float
    nanoseconds: int = 0
    kind: Literal["epoch"] = "epoch"


DateInput = Union[StringDate, NativeDate, EpochTimestamp]


def local_zone(tz: Optional[tzinfo] = None) -> tzinfo:
    if tz is not None:
        return tz
    name = get_settings().timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Ignoring unsupported timezone value: %s", name)
        return ZoneInfo("UTC")


def classify(raw: Any) -> Optional[DateInput]:
    """Wrap a raw value in its tagged variant, or return None for unsupported shapes."""
    if isinstance(raw, (StringDate, NativeDate, EpochTimestamp)):
        return raw
    if isinstance(raw, str):
        return StringDate(raw)
    if isinstance(raw, date):
        return NativeDate(raw)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return EpochTimestamp(seconds=raw)
    if isinstance(raw, Mapping):
        seconds = raw.get("seconds", raw.get("_seconds"))
        nanoseconds = raw.get("nanoseconds", raw.get("_nanoseconds", 0))
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        if isinstance(nanoseconds, bool) or not isinstance(nanoseconds, (int, float)):
            nanoseconds = 0
        return EpochTimestamp(seconds=seconds, nanoseconds=int(nanoseconds))
    return None


def _parse_string(value: str, zone: tzinfo) -> Optional[date]:
    text = value.strip()
    if not text:
        return None
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _truncate(parsed, zone)


def _truncate(value: date, zone: tzinfo) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(zone)
        return value.date()
    return value


def try_normalize(raw: Any, *, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Return the calendar date for ``raw`` or None when it cannot be parsed."""
    parsed = classify(raw)
    if parsed is None:
        return None
    zone = local_zone(tz)
    if parsed.kind == "string":
        return _parse_string(parsed.value, zone)
    if parsed.kind == "native":
        return _truncate(parsed.value, zone)
    if parsed.kind == "epoch":
        try:
            stamp = datetime.fromtimestamp(parsed.seconds + parsed.nanoseconds / 1_000_000_000, tz=zone)
        except (OverflowError, OSError, ValueError):
            return None
        return stamp.date()
    return None


def normalize(raw: Any, *, now: Optional[date] = None, tz: Optional[tzinfo] = None) -> date:
    """Collapse any accepted date representation into a calendar date.

    Unparseable input falls back to ``now`` (the current local time when not
    injected) truncated to a date. The fallback is logged and emitted as a
    ``calendar_date_fallback`` telemetry event so bad data can be traced.
    """
    zone = local_zone(tz)
    parsed = try_normalize(raw, tz=zone)
    if parsed is not None:
        return parsed
    reference = now if now is not None else datetime.now(zone)
    fallback = _truncate(reference, zone)
    logger.warning("Unparseable date input %r; falling back to %s", raw, fallback.isoformat())
    emit_event("calendar_date_fallback", raw=repr(raw), fallback=fallback)
    return fallback


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def start_of_week(value: Any, *, now: Optional[date] = None, tz: Optional[tzinfo] = None) -> date:
    """Monday of the week containing ``value``; Sunday belongs to the week before."""
    day = normalize(value, now=now, tz=tz)
    weekday = day.isoweekday() % 7  # 0 = Sunday
    offset = -6 if weekday == 0 else 1 - weekday
    return day + timedelta(days=offset)


def week_identifier(value: Any, *, now: Optional[date] = None, tz: Optional[tzinfo] = None) -> str:
    return format_date(start_of_week(value, now=now, tz=tz))


def day_key_for(value: Any, *, tz: Optional[tzinfo] = None) -> str:
    return f"day{normalize(value, tz=tz).isoweekday()}"


def date_for_day(week_start: date, day_key: str) -> date:
    from .schedule_keys import day_index

    return week_start + timedelta(days=day_index(day_key))


def shift_weeks(week_start: date, weeks: int) -> date:
    return week_start + timedelta(weeks=weeks)


def is_week_start(value: date) -> bool:
    return value.isoweekday() == 1


__all__ = [
    "DateInput",
    "DateLike",
    "EpochTimestamp",
    "NativeDate",
    "StringDate",
    "classify",
    "date_for_day",
    "day_key_for",
    "format_date",
    "is_week_start",
    "local_zone",
    "normalize",
    "shift_weeks",
    "start_of_week",
    "try_normalize",
    "week_identifier",
]
