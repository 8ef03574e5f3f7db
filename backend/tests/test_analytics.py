from __future__ import annotations

from datetime import date

import pytest

from study_planner.achievements import new_record
from study_planner.analytics import category_hours_in_range, granularity_for, period_buckets, period_series
from study_planner.preferences import InclusionPolicy
from study_planner.week_grid import empty_grid, new_slot, with_slot

WEEK = date(2024, 3, 4)


@pytest.fixture()
def grids():
    grid = empty_grid(WEEK)
    grid = with_slot(grid, "day1", "hour9", new_slot(WEEK, "day1", "math"))
    grid = with_slot(grid, "day2", "hour9", new_slot(WEEK, "day2", "math"))
    grid = with_slot(grid, "day3", "hour9", new_slot(WEEK, "day3", "english"))
    return {"2024-03-04": grid}


@pytest.fixture()
def achievements():
    return {
        "2024-03-04": {
            "2024-03-04_day1_hour9": new_record("2024-03-04_day1_hour9", "completed"),
            "2024-03-05_day2_hour9": new_record("2024-03-05_day2_hour9", "partial"),
        }
    }


@pytest.mark.parametrize(
    ("start", "end", "expected"),
    [
        (date(2024, 3, 1), date(2024, 3, 1), "day"),
        (date(2024, 3, 1), date(2024, 3, 14), "day"),
        (date(2024, 3, 1), date(2024, 3, 15), "week"),
        (date(2024, 1, 1), date(2024, 3, 30), "week"),
        (date(2024, 1, 1), date(2024, 3, 31), "month"),
    ],
)
def test_granularity_thresholds(start: date, end: date, expected: str) -> None:
    assert granularity_for(start, end) == expected


def test_daily_buckets() -> None:
    buckets = period_buckets(date(2024, 3, 1), date(2024, 3, 10))
    assert len(buckets) == 10
    assert buckets[0].label == "2024-03-01"
    assert buckets[-1].start == buckets[-1].end == date(2024, 3, 10)


def test_weekly_buckets_are_monday_based_and_clamped() -> None:
    buckets = period_buckets(date(2024, 3, 6), date(2024, 4, 2))
    assert [bucket.label for bucket in buckets] == [
        "week of 2024-03-04",
        "week of 2024-03-11",
        "week of 2024-03-18",
        "week of 2024-03-25",
        "week of 2024-04-01",
    ]
    assert (buckets[0].start, buckets[0].end) == (date(2024, 3, 6), date(2024, 3, 10))
    assert (buckets[-1].start, buckets[-1].end) == (date(2024, 4, 1), date(2024, 4, 2))


def test_monthly_buckets() -> None:
    buckets = period_buckets(date(2024, 1, 15), date(2024, 6, 10))
    assert [bucket.label for bucket in buckets] == ["2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06"]
    assert buckets[0].start == date(2024, 1, 15)
    assert buckets[1].end == date(2024, 2, 29)
    assert buckets[-1].end == date(2024, 6, 10)


def test_reversed_range_is_rejected() -> None:
    with pytest.raises(ValueError):
        period_buckets(date(2024, 3, 10), date(2024, 3, 1))


def test_category_hours_in_range(grids, achievements) -> None:
    start, end = date(2024, 3, 5), date(2024, 3, 6)
    assert category_hours_in_range(grids, ["math", "english"], achievements, InclusionPolicy.ALL_PLANNED, start, end) == {
        "math": 60,
        "english": 60,
    }
    assert category_hours_in_range(
        grids, ["math", "english"], achievements, InclusionPolicy.ACHIEVEMENTS_ONLY, start, end
    ) == {"math": 60, "english": 0}


def test_period_series_weights_completed_hours(grids, achievements) -> None:
    series = period_series(grids, achievements, date(2024, 3, 4), date(2024, 3, 10))
    assert [entry.planned_hours for entry in series[:4]] == [1, 1, 1, 0]
    assert [entry.completed_hours for entry in series[:3]] == [1.0, 0.7, 0.0]
    assert sum(entry.planned_hours for entry in series) == 3
