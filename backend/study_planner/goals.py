"""Weekly study-hour goals with carry-over from the previous week."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .aggregation import round_half_up
from .calendar_dates import format_date, shift_weeks
from .storage.base import WEEKLY_GOALS, DocumentStorage

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WeeklyGoal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    week_id: str = Field(alias="weekId")
    total_goal_hours: float = Field(ge=0, alias="totalGoalHours")
    copy_to_next_week: bool = Field(False, alias="copyToNextWeek")
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class GoalProgress(BaseModel):
    percent: int = 0
    remaining_hours: float = 0.0


def goal_progress(goal: Optional[WeeklyGoal], week_total_hours: float) -> GoalProgress:
    if goal is None:
        return GoalProgress()
    target = goal.total_goal_hours
    percent = 0
    if target > 0:
        percent = min(100, int(round_half_up(week_total_hours / target * 100)))
    return GoalProgress(percent=percent, remaining_hours=round_half_up(max(0.0, target - week_total_hours), 1))


class WeeklyGoalRepository:
    def __init__(self, storage: DocumentStorage) -> None:
        self._storage = storage

    async def _get(self, week_id: str) -> Optional[WeeklyGoal]:
        document = await self._storage.get_document(WEEKLY_GOALS, week_id)
        if not document:
            return None
        try:
            return WeeklyGoal.model_validate({"weekId": week_id, **document})
        except ValidationError as exc:
            logger.warning("Ignoring malformed weekly goal for %s: %s", week_id, exc)
            return None

    async def fetch(self, week_start: date) -> Optional[WeeklyGoal]:
        """Stored goal for the week, or the previous week's goal carried forward.

        A carried goal is persisted for the new week so later reads are stable.
        """
        week_id = format_date(week_start)
        goal = await self._get(week_id)
        if goal is not None:
            return goal

        previous = await self._get(format_date(shift_weeks(week_start, -1)))
        if previous is None or not previous.copy_to_next_week:
            return None

        carried = WeeklyGoal(
            week_id=week_id,
            total_goal_hours=previous.total_goal_hours,
            copy_to_next_week=True,
        )
        await self._storage.set_document(WEEKLY_GOALS, week_id, carried.to_document())
        logger.info("Carried weekly goal of %.1fh forward to %s", carried.total_goal_hours, week_id)
        return carried

    async def save(self, week_start: date, total_goal_hours: float, copy_to_next_week: bool = False) -> WeeklyGoal:
        week_id = format_date(week_start)
        existing = await self._get(week_id)
        goal = WeeklyGoal(
            week_id=week_id,
            total_goal_hours=total_goal_hours,
            copy_to_next_week=copy_to_next_week,
            created_at=existing.created_at if existing else _now(),
        )
        await self._storage.set_document(WEEKLY_GOALS, week_id, goal.to_document())
        return goal


__all__ = ["GoalProgress", "WeeklyGoal", "WeeklyGoalRepository", "goal_progress"]
