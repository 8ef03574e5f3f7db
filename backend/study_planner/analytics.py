"""Date-range analytics over stored week grids."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel

from .achievements import AchievementMap
from .aggregation import MINUTES_PER_SLOT, STATUS_WEIGHTS, counts_toward_stats, round_half_up
from .calendar_dates import format_date, start_of_week
from .preferences import InclusionPolicy
from .week_grid import ScheduleSlot, WeekGrid, iter_slots, slot_key

Granularity = Literal["day", "week", "month"]

DAILY_LIMIT_DAYS = 14
WEEKLY_LIMIT_DAYS = 90


class PeriodBucket(BaseModel):
    start: date
    end: date
    granularity: Granularity
    label: str


class PeriodHours(BaseModel):
    bucket: PeriodBucket
    planned_hours: float = 0.0
    completed_hours: float = 0.0


def granularity_for(start: date, end: date) -> Granularity:
    total_days = (end - start).days + 1
    if total_days <= DAILY_LIMIT_DAYS:
        return "day"
    if total_days <= WEEKLY_LIMIT_DAYS:
        return "week"
    return "month"


def _month_end(value: date) -> date:
    first_of_next = (value.replace(day=1) + timedelta(days=32)).replace(day=1)
    return first_of_next - timedelta(days=1)


def period_buckets(start: date, end: date) -> List[PeriodBucket]:
    """Split ``[start, end]`` into day, Monday-based week or calendar-month buckets.

    Buckets are clamped to the range, so the first and last may be partial.
    """
    if end < start:
        raise ValueError("end must not precede start")
    granularity = granularity_for(start, end)
    buckets: List[PeriodBucket] = []

    if granularity == "day":
        current = start
        while current <= end:
            buckets.append(PeriodBucket(start=current, end=current, granularity="day", label=format_date(current)))
            current += timedelta(days=1)
        return buckets

    if granularity == "week":
        week_start = start_of_week(start)
        while week_start <= end:
            bucket_start = max(week_start, start)
            bucket_end = min(week_start + timedelta(days=6), end)
            buckets.append(
                PeriodBucket(
                    start=bucket_start,
                    end=bucket_end,
                    granularity="week",
                    label=f"week of {format_date(week_start)}",
                )
            )
            week_start += timedelta(weeks=1)
        return buckets

    month_start = start.replace(day=1)
    while month_start <= end:
        bucket_start = max(month_start, start)
        bucket_end = min(_month_end(month_start), end)
        buckets.append(
            PeriodBucket(start=bucket_start, end=bucket_end, granularity="month", label=month_start.strftime("%Y-%m"))
        )
        month_start = _month_end(month_start) + timedelta(days=1)
    return buckets


def _slots_in_range(
    grids: Mapping[str, WeekGrid],
    start: date,
    end: date,
) -> Iterator[Tuple[str, str, ScheduleSlot]]:
    for week_id, grid in grids.items():
        for day_key, hour_key, slot in iter_slots(grid):
            if start <= slot.slot_date <= end:
                yield week_id, slot_key(day_key, hour_key, slot), slot


def category_hours_in_range(
    grids: Mapping[str, WeekGrid],
    categories: Iterable[str],
    achievements: Mapping[str, AchievementMap],
    policy: InclusionPolicy,
    start: date,
    end: date,
) -> Dict[str, int]:
    """Minutes per category for every counted slot dated within ``[start, end]``."""
    minutes: Dict[str, int] = {category_id: 0 for category_id in categories}
    for week_id, key, slot in _slots_in_range(grids, start, end):
        if counts_toward_stats(key, achievements.get(week_id), policy):
            minutes[slot.category_id] = minutes.get(slot.category_id, 0) + MINUTES_PER_SLOT
    return minutes


def period_series(
    grids: Mapping[str, WeekGrid],
    achievements: Mapping[str, AchievementMap],
    start: date,
    end: date,
    buckets: Optional[List[PeriodBucket]] = None,
) -> List[PeriodHours]:
    """Planned and status-weighted completed hours per bucket."""
    buckets = buckets if buckets is not None else period_buckets(start, end)
    series = [PeriodHours(bucket=bucket) for bucket in buckets]
    for week_id, key, slot in _slots_in_range(grids, start, end):
        for entry in series:
            if entry.bucket.start <= slot.slot_date <= entry.bucket.end:
                entry.planned_hours += 1
                record = (achievements.get(week_id) or {}).get(key)
                if record is not None:
                    entry.completed_hours += STATUS_WEIGHTS.get(record.status, 0.0)
                break
    for entry in series:
        entry.completed_hours = round_half_up(entry.completed_hours, 1)
    return series


__all__ = [
    "DAILY_LIMIT_DAYS",
    "PeriodBucket",
    "PeriodHours",
    "WEEKLY_LIMIT_DAYS",
    "category_hours_in_range",
    "granularity_for",
    "period_buckets",
    "period_series",
]
