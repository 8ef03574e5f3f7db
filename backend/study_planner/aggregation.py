"""Pure aggregation of study hours over week grids and achievement maps.

Two hour formulas coexist on purpose. Weekly totals count one hour per slot
that passes the inclusion policy. All-time totals weight every achievement
record by status (completed 1.0, partial 0.7, failed 0) and ignore the policy;
reward thresholds are calibrated against the all-time figure.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, Field

from .achievements import AchievementMap, AchievementRecord, AchievementStatus
from .preferences import InclusionPolicy
from .week_grid import WeekGrid, iter_slots, slot_key

MINUTES_PER_SLOT = 60
STATUS_WEIGHTS: Dict[AchievementStatus, float] = {
    AchievementStatus.COMPLETED: 1.0,
    AchievementStatus.PARTIAL: 0.7,
    AchievementStatus.FAILED: 0.0,
}
_COUNTED_STATUSES = frozenset({AchievementStatus.COMPLETED, AchievementStatus.PARTIAL})


class AllTimeSummary(BaseModel):
    total_hours: float = 0.0
    completed_count: int = 0
    partial_count: int = 0
    failed_count: int = 0
    planned_slots: int = 0
    planned_hours: float = 0.0


class WeekStatistics(BaseModel):
    total_hours: float = 0.0
    planned_slots: int = 0
    recorded_slots: int = 0
    record_rate: int = 0
    completion_rate: int = 0
    category_minutes: Dict[str, int] = Field(default_factory=dict)


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(round_half_up(part / whole * 100))


def counts_toward_stats(
    key: str,
    achievements: Optional[Mapping[str, AchievementRecord]],
    policy: InclusionPolicy,
) -> bool:
    if policy is InclusionPolicy.ALL_PLANNED:
        return True
    record = achievements.get(key) if achievements else None
    return record is not None and record.status in _COUNTED_STATUSES


def category_hours(
    grid: WeekGrid,
    categories: Iterable[str],
    achievements: Optional[AchievementMap],
    policy: InclusionPolicy,
) -> Dict[str, int]:
    """Minutes per category id; known categories are present even when unused."""
    minutes: Dict[str, int] = {category_id: 0 for category_id in categories}
    for day_key, hour_key, slot in iter_slots(grid):
        if counts_toward_stats(slot_key(day_key, hour_key, slot), achievements, policy):
            minutes[slot.category_id] = minutes.get(slot.category_id, 0) + MINUTES_PER_SLOT
    return minutes


def counted_slot_count(grid: WeekGrid, achievements: Optional[AchievementMap], policy: InclusionPolicy) -> int:
    return sum(
        1
        for day_key, hour_key, slot in iter_slots(grid)
        if counts_toward_stats(slot_key(day_key, hour_key, slot), achievements, policy)
    )


def week_total_hours(grid: WeekGrid, achievements: Optional[AchievementMap], policy: InclusionPolicy) -> float:
    return round_half_up(float(counted_slot_count(grid, achievements, policy)), 1)


def all_time_summary(
    all_grids: Mapping[str, WeekGrid],
    all_achievements: Mapping[str, AchievementMap],
    policy: InclusionPolicy,
) -> AllTimeSummary:
    counts = {status: 0 for status in AchievementStatus}
    weighted = 0.0
    for records in all_achievements.values():
        for record in (records or {}).values():
            counts[record.status] += 1
            weighted += STATUS_WEIGHTS.get(record.status, 0.0)

    planned_slots = 0
    planned_hours = 0.0
    for week_id, grid in all_grids.items():
        planned_slots += sum(1 for _ in iter_slots(grid))
        planned_hours += week_total_hours(grid, all_achievements.get(week_id), policy)

    return AllTimeSummary(
        total_hours=round_half_up(weighted, 1),
        completed_count=counts[AchievementStatus.COMPLETED],
        partial_count=counts[AchievementStatus.PARTIAL],
        failed_count=counts[AchievementStatus.FAILED],
        planned_slots=planned_slots,
        planned_hours=round_half_up(planned_hours, 1),
    )


def all_time_hours(
    all_grids: Mapping[str, WeekGrid],
    all_achievements: Mapping[str, AchievementMap],
    policy: InclusionPolicy,
) -> float:
    return all_time_summary(all_grids, all_achievements, policy).total_hours


def recorded_slot_count(grid: WeekGrid, achievements: Optional[AchievementMap]) -> int:
    if not achievements:
        return 0
    return sum(1 for day_key, hour_key, slot in iter_slots(grid) if slot_key(day_key, hour_key, slot) in achievements)


def record_rate(grid: WeekGrid, achievements: Optional[AchievementMap]) -> int:
    planned = sum(1 for _ in iter_slots(grid))
    return _percentage(recorded_slot_count(grid, achievements), planned)


def completion_rate(grid: WeekGrid, achievements: Optional[AchievementMap]) -> int:
    planned = sum(1 for _ in iter_slots(grid))
    done = counted_slot_count(grid, achievements, InclusionPolicy.ACHIEVEMENTS_ONLY)
    return _percentage(done, planned)


def week_statistics(
    grid: WeekGrid,
    categories: Iterable[str],
    achievements: Optional[AchievementMap],
    policy: InclusionPolicy,
) -> WeekStatistics:
    return WeekStatistics(
        total_hours=week_total_hours(grid, achievements, policy),
        planned_slots=sum(1 for _ in iter_slots(grid)),
        recorded_slots=recorded_slot_count(grid, achievements),
        record_rate=record_rate(grid, achievements),
        completion_rate=completion_rate(grid, achievements),
        category_minutes=category_hours(grid, categories, achievements, policy),
    )


__all__ = [
    "AllTimeSummary",
    "MINUTES_PER_SLOT",
    "STATUS_WEIGHTS",
    "WeekStatistics",
    "all_time_hours",
    "all_time_summary",
    "category_hours",
    "completion_rate",
    "counted_slot_count",
    "counts_toward_stats",
    "record_rate",
    "recorded_slot_count",
    "round_half_up",
    "week_statistics",
    "week_total_hours",
]
