"""Planner service tying schedules, achievements, stats and rewards together.

Every mutation returns an :class:`OperationResult`. Storage failures become a
failed result and leave the in-memory week untouched; malformed composite
keys still raise :class:`InvalidKeyError` because they indicate a caller bug.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from pydantic import BaseModel

from .achievements import AchievementMap, AchievementStatus, AchievementStore, achievement_map_to_document, new_record
from .aggregation import AllTimeSummary, all_time_summary, week_statistics, week_total_hours
from .analytics import category_hours_in_range, period_buckets, period_series
from .categories import CategoryRepository
from .calendar_dates import format_date, start_of_week
from .concurrency import SupersedingRunner, WeekLockRegistry
from .config import Settings, get_settings
from .goals import WeeklyGoalRepository, goal_progress
from .milestones import ShownMilestoneStore, evaluate, load_catalog, milestone_state, next_milestone
from .preferences import InclusionPolicy, PreferenceStore, default_preference_store, load_policy, save_policy
from .schedule_keys import week_id_for_key
from .schedules import ScheduleRepository
from .storage.base import ACHIEVEMENTS, SCHEDULES, DocumentStorage, StorageUnavailableError
from .storage.database import DatabaseDocumentStorage
from .storage.local import LocalDocumentStorage
from .telemetry import emit_event
from .templates import TemplateRepository, apply_template, template_from_grid
from .week_grid import WeekGrid, grid_to_document, new_slot, slot_key, with_slot

logger = logging.getLogger(__name__)

DEMO_USER = "demo"
ALL_TIME_REFRESH = "all_time"
RANGE_REFRESH = "range"


FAILURE_STORAGE = "storage_unavailable"
FAILURE_NOT_FOUND = "not_found"
FAILURE_INVALID = "invalid"


class OperationResult(BaseModel):
    success: bool
    message: str = ""
    data: Any = None
    failure: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str, failure: str = FAILURE_INVALID) -> "OperationResult":
        return cls(success=False, message=message, failure=failure)


@dataclass(frozen=True)
class WeekState:
    """Snapshot of one week; replaced wholesale, never mutated in place."""

    week_start: date
    grid: WeekGrid
    achievements: AchievementMap = field(default_factory=dict)

    @property
    def week_id(self) -> str:
        return format_date(self.week_start)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "week_id": self.week_id,
            "schedule": grid_to_document(self.grid),
            "achievements": achievement_map_to_document(self.achievements),
        }


def _weeks_for_slot(state: WeekState, day_key: str, hour_key: str) -> Set[str]:
    """Weeks a slot write touches: the grid week plus the week its key is dated in."""
    weeks = {state.week_id}
    slot = (state.grid.get(day_key) or {}).get(hour_key)
    if slot is not None:
        weeks.add(week_id_for_key(slot_key(day_key, hour_key, slot)))
    return weeks


class StudyPlanner:
    def __init__(
        self,
        owner: str,
        storage: DocumentStorage,
        *,
        preferences: PreferenceStore,
        mirror: Optional[DocumentStorage] = None,
        durable: bool = True,
        locks: Optional[WeekLockRegistry] = None,
        runner: Optional[SupersedingRunner] = None,
    ) -> None:
        self.owner = owner
        self._storage = storage
        self._durable = durable
        self._locks = locks or WeekLockRegistry()
        self._runner = runner or SupersedingRunner()
        self._preferences = preferences
        self._schedules = ScheduleRepository(storage, self._locks)
        self._achievements = AchievementStore(storage, self._locks)
        self._goals = WeeklyGoalRepository(storage)
        self._templates = TemplateRepository(storage)
        self._categories = CategoryRepository(storage)
        if durable:
            self._shown = ShownMilestoneStore(durable=storage, mirror=mirror or LocalDocumentStorage())
        else:
            self._shown = ShownMilestoneStore(durable=None, mirror=mirror or storage)

        self._current: Optional[WeekState] = None

    @property
    def policy(self) -> InclusionPolicy:
        return load_policy(self._preferences)

    @property
    def current_week(self) -> Optional[WeekState]:
        return self._current

    @property
    def locks(self) -> WeekLockRegistry:
        return self._locks

    async def _guard(self, action: str, operation: Callable[[], Awaitable[OperationResult]]) -> OperationResult:
        try:
            return await operation()
        except StorageUnavailableError as exc:
            logger.warning("Planner action %s failed for owner=%s: %s", action, self.owner, exc)
            emit_event("planner_operation_failed", owner=self.owner, action=action, error=str(exc))
            message = f"Could not {action.replace('_', ' ')}: storage is unavailable."
            return OperationResult.failed(message, FAILURE_STORAGE)

    def _publish(self, state: WeekState) -> None:
        if self._current is None or self._current.week_start == state.week_start:
            self._current = state

    async def _read_week(self, week_start: date) -> WeekState:
        repaired = await self._schedules.load_week(week_start)
        if repaired.changed:
            emit_event(
                "week_repaired",
                owner=self.owner,
                week_id=format_date(week_start),
                issue_count=len(repaired.issues),
            )
        achievements = await self._achievements.get(format_date(week_start)) or {}
        return WeekState(week_start=week_start, grid=repaired.grid, achievements=achievements)

    async def _slot_weeks(self, week_start: date, day_key: str, hour_key: str) -> Set[str]:
        return _weeks_for_slot(await self._read_week(week_start), day_key, hour_key)

    async def load_week(self, value: Any) -> OperationResult:
        week_start = start_of_week(value)

        async def _load() -> OperationResult:
            state = await self._read_week(week_start)
            self._current = state
            return OperationResult.ok(state)

        return await self._guard("load_week", _load)

    async def add_slot(self, value: Any, day_key: str, hour_key: str, category_id: str) -> OperationResult:
        week_start = start_of_week(value)
        if not category_id or not category_id.strip():
            return OperationResult.failed("A category is required to schedule a slot.")

        async def _add() -> OperationResult:
            async with self._locks.with_week_lock(format_date(week_start)):
                state = await self._read_week(week_start)
                slot = new_slot(week_start, day_key, category_id)
                grid = with_slot(state.grid, day_key, hour_key, slot)
                await self._schedules.save_week(week_start, grid)
                self._publish(WeekState(week_start=week_start, grid=grid, achievements=state.achievements))
                return OperationResult.ok(slot, message="Slot scheduled.")

        return await self._guard("add_slot", _add)

    async def clear_slot(self, value: Any, day_key: str, hour_key: str) -> OperationResult:
        """Empty a slot but keep any achievement recorded against it."""
        week_start = start_of_week(value)

        async def _clear() -> OperationResult:
            async with self._locks.with_week_lock(format_date(week_start)):
                state = await self._read_week(week_start)
                grid = with_slot(state.grid, day_key, hour_key, None)
                await self._schedules.save_week(week_start, grid)
                self._publish(WeekState(week_start=week_start, grid=grid, achievements=state.achievements))
                return OperationResult.ok(message="Slot cleared.")

        return await self._guard("clear_slot", _clear)

    async def delete_slot(self, value: Any, day_key: str, hour_key: str) -> OperationResult:
        """Remove a slot and the achievement keyed to it."""
        week_start = start_of_week(value)
        week_id = format_date(week_start)

        async def _delete() -> OperationResult:
            weeks = await self._slot_weeks(week_start, day_key, hour_key)
            while True:
                async with self._locks.with_week_locks(weeks):
                    state = await self._read_week(week_start)
                    needed = _weeks_for_slot(state, day_key, hour_key)
                    if needed <= weeks:
                        slot = (state.grid.get(day_key) or {}).get(hour_key)
                        if slot is None:
                            return OperationResult.ok(message="Slot was already empty.")
                        key = slot_key(day_key, hour_key, slot)
                        grid = with_slot(state.grid, day_key, hour_key, None)
                        await self._schedules.save_week(week_start, grid)
                        target_week = week_id_for_key(key)
                        achievements = state.achievements
                        existed = await self._achievements.record_for(target_week, key) is not None
                        remaining = await self._achievements.delete(target_week, key)
                        if existed:
                            emit_event("achievement_cascade_deleted", owner=self.owner, week_id=target_week, key=key)
                        if target_week == week_id:
                            achievements = remaining
                        self._publish(WeekState(week_start=week_start, grid=grid, achievements=achievements))
                        return OperationResult.ok({"removed_key": key}, message="Slot deleted.")
                weeks = needed

        return await self._guard("delete_slot", _delete)

    async def save_achievement(
        self,
        value: Any,
        day_key: str,
        hour_key: str,
        status: AchievementStatus | str,
        comment: str = "",
    ) -> OperationResult:
        week_start = start_of_week(value)
        try:
            status = AchievementStatus(status)
        except ValueError:
            return OperationResult.failed(f"Unknown achievement status: {status}")

        async def _save() -> OperationResult:
            weeks = await self._slot_weeks(week_start, day_key, hour_key)
            while True:
                async with self._locks.with_week_locks(weeks):
                    state = await self._read_week(week_start)
                    needed = _weeks_for_slot(state, day_key, hour_key)
                    if needed <= weeks:
                        slot = (state.grid.get(day_key) or {}).get(hour_key)
                        if slot is None:
                            return OperationResult.failed(
                                "No study slot is scheduled at that time.", FAILURE_NOT_FOUND
                            )
                        key = slot_key(day_key, hour_key, slot)
                        target_week = week_id_for_key(key)
                        record = new_record(key, status, comment)
                        if target_week == state.week_id:
                            existing = state.achievements.get(key)
                        else:
                            existing = await self._achievements.record_for(target_week, key)
                        if existing is not None:
                            record = record.model_copy(update={"id": existing.id, "created_at": existing.created_at})
                        updated = await self._achievements.upsert(target_week, key, record)
                        achievements = updated if target_week == state.week_id else state.achievements
                        self._publish(WeekState(week_start=week_start, grid=state.grid, achievements=achievements))
                        return OperationResult.ok(record, message="Achievement saved.")
                weeks = needed

        return await self._guard("save_achievement", _save)

    async def delete_achievement(self, key: str) -> OperationResult:
        week_id = week_id_for_key(key)

        async def _delete() -> OperationResult:
            achievements = await self._achievements.delete(week_id, key)
            if self._current is not None and self._current.week_id == week_id:
                self._current = WeekState(
                    week_start=self._current.week_start,
                    grid=self._current.grid,
                    achievements=achievements,
                )
            return OperationResult.ok(message="Achievement deleted.")

        return await self._guard("delete_achievement", _delete)

    async def set_policy(self, policy: InclusionPolicy) -> OperationResult:
        try:
            save_policy(self._preferences, policy)
        except StorageUnavailableError as exc:
            logger.warning("Could not persist inclusion policy: %s", exc)
            return OperationResult.failed("Could not save the statistics preference.", FAILURE_STORAGE)
        return OperationResult.ok(policy)

    async def _category_ids(self, categories: Optional[Iterable[str]]) -> List[str]:
        if categories is None:
            return await self._categories.ids()
        return list(categories)

    async def week_stats(self, value: Any, categories: Optional[Iterable[str]] = None) -> OperationResult:
        """Week statistics; without explicit categories every stored category is reported."""
        week_start = start_of_week(value)

        async def _stats() -> OperationResult:
            category_ids = await self._category_ids(categories)
            state = await self._read_week(week_start)
            stats = week_statistics(state.grid, category_ids, state.achievements, self.policy)
            goal = await self._goals.fetch(week_start)
            return OperationResult.ok(
                {
                    "week_id": state.week_id,
                    "policy": self.policy,
                    "statistics": stats,
                    "goal": goal,
                    "goal_progress": goal_progress(goal, stats.total_hours),
                }
            )

        return await self._guard("week_stats", _stats)

    async def _collect_all(self) -> tuple[Dict[str, WeekGrid], Dict[str, AchievementMap]]:
        grids = await self._schedules.list_all()
        achievements = await self._achievements.list_all()
        return grids, achievements

    async def _compute_all_time(self) -> AllTimeSummary:
        grids, achievements = await self._collect_all()
        return all_time_summary(grids, achievements, self.policy)

    async def refresh_all_time(self, *, debounce: float = 0.0) -> Optional[OperationResult]:
        """All-time summary; returns None when a newer refresh superseded this one."""
        try:
            summary = await self._runner.run(ALL_TIME_REFRESH, self._compute_all_time, debounce=debounce)
        except StorageUnavailableError as exc:
            logger.warning("All-time refresh failed for owner=%s: %s", self.owner, exc)
            return OperationResult.failed("Could not load all-time statistics.", FAILURE_STORAGE)
        if summary is None:
            return None
        return OperationResult.ok(summary)

    async def range_analytics(
        self,
        start: date,
        end: date,
        categories: Optional[Sequence[str]] = None,
        *,
        debounce: float = 0.0,
    ) -> Optional[OperationResult]:
        if end < start:
            return OperationResult.failed("The end date must not precede the start date.")

        async def _compute() -> Dict[str, Any]:
            category_ids = await self._category_ids(categories)
            grids, achievements = await self._collect_all()
            buckets = period_buckets(start, end)
            return {
                "start": start,
                "end": end,
                "category_minutes": category_hours_in_range(
                    grids, category_ids, achievements, self.policy, start, end
                ),
                "series": period_series(grids, achievements, start, end, buckets),
            }

        try:
            payload = await self._runner.run(RANGE_REFRESH, _compute, debounce=debounce)
        except StorageUnavailableError as exc:
            logger.warning("Range analytics failed for owner=%s: %s", self.owner, exc)
            return OperationResult.failed("Could not load analytics: storage is unavailable.", FAILURE_STORAGE)
        if payload is None:
            return None
        return OperationResult.ok(payload)

    async def check_milestone(self) -> OperationResult:
        """Highest newly unlocked milestone, if any. The caller acknowledges it once shown."""

        async def _check() -> OperationResult:
            summary = await self._compute_all_time()
            catalog = await load_catalog(self._storage)
            shown = await self._shown.load()
            entry = evaluate(summary.total_hours, catalog, shown)
            return OperationResult.ok(
                {
                    "hours": summary.total_hours,
                    "milestone": entry,
                    "next": next_milestone(summary.total_hours, catalog),
                }
            )

        return await self._guard("check_milestone", _check)

    async def acknowledge_milestone(self, milestone_id: str) -> OperationResult:
        shown = await self._shown.mark_shown(milestone_id)
        return OperationResult.ok(sorted(shown))

    async def milestone_overview(self) -> OperationResult:
        async def _overview() -> OperationResult:
            summary = await self._compute_all_time()
            catalog = await load_catalog(self._storage)
            shown = await self._shown.load()
            return OperationResult.ok(
                [
                    {"milestone": entry, "state": milestone_state(entry, summary.total_hours, shown)}
                    for entry in catalog
                ]
            )

        return await self._guard("milestone_overview", _overview)

    async def get_goal(self, value: Any) -> OperationResult:
        week_start = start_of_week(value)

        async def _get() -> OperationResult:
            goal = await self._goals.fetch(week_start)
            state = await self._read_week(week_start)
            total = week_total_hours(state.grid, state.achievements, self.policy)
            return OperationResult.ok({"goal": goal, "progress": goal_progress(goal, total)})

        return await self._guard("get_goal", _get)

    async def save_goal(self, value: Any, total_goal_hours: float, copy_to_next_week: bool = False) -> OperationResult:
        week_start = start_of_week(value)
        if total_goal_hours < 0:
            return OperationResult.failed("Goal hours cannot be negative.")

        async def _save() -> OperationResult:
            goal = await self._goals.save(week_start, total_goal_hours, copy_to_next_week)
            return OperationResult.ok(goal, message="Goal saved.")

        return await self._guard("save_goal", _save)

    async def save_template(self, name: str, value: Any) -> OperationResult:
        week_start = start_of_week(value)
        if not name or not name.strip():
            return OperationResult.failed("A template name is required.")

        async def _save() -> OperationResult:
            state = await self._read_week(week_start)
            template = await self._templates.save(template_from_grid(name, state.grid))
            return OperationResult.ok(template, message="Template saved.")

        return await self._guard("save_template", _save)

    async def list_templates(self) -> OperationResult:
        async def _list() -> OperationResult:
            return OperationResult.ok(await self._templates.list())

        return await self._guard("list_templates", _list)

    async def delete_template(self, template_id: str) -> OperationResult:
        async def _delete() -> OperationResult:
            await self._templates.delete(template_id)
            return OperationResult.ok(message="Template deleted.")

        return await self._guard("delete_template", _delete)

    async def apply_template(self, template_id: str, value: Any, clear_existing: bool = False) -> OperationResult:
        """Lay a template onto a week; clearing also drops that week's achievements."""
        week_start = start_of_week(value)
        week_id = format_date(week_start)

        async def _apply() -> OperationResult:
            template = await self._templates.get(template_id)
            if template is None:
                return OperationResult.failed("Template not found.", FAILURE_NOT_FOUND)
            async with self._locks.with_week_lock(week_id):
                state = await self._read_week(week_start)
                grid = apply_template(template, week_start, state.grid, clear_existing=clear_existing)
                achievements = state.achievements
                if clear_existing:
                    await self._storage.delete_document(ACHIEVEMENTS, week_id)
                    achievements = {}
                await self._schedules.save_week(week_start, grid)
                self._publish(WeekState(week_start=week_start, grid=grid, achievements=achievements))
                return OperationResult.ok(template, message="Template applied.")

        return await self._guard("apply_template", _apply)

    async def list_categories(self) -> OperationResult:
        async def _list() -> OperationResult:
            return OperationResult.ok(await self._categories.list())

        return await self._guard("list_categories", _list)

    async def add_category(self, name: str, color: str) -> OperationResult:
        if not name or not name.strip() or not color or not color.strip():
            return OperationResult.failed("A category name and color are required.")

        async def _add() -> OperationResult:
            category = await self._categories.add(name, color)
            return OperationResult.ok(category, message="Category added.")

        return await self._guard("add_category", _add)

    async def update_category(
        self,
        category_id: str,
        *,
        name: Optional[str] = None,
        color: Optional[str] = None,
    ) -> OperationResult:
        if (name is not None and not name.strip()) or (color is not None and not color.strip()):
            return OperationResult.failed("A category name and color cannot be blank.")

        async def _update() -> OperationResult:
            category = await self._categories.update(category_id, name=name, color=color)
            if category is None:
                return OperationResult.failed("Category not found.", FAILURE_NOT_FOUND)
            return OperationResult.ok(category, message="Category updated.")

        return await self._guard("update_category", _update)

    async def delete_category(self, category_id: str) -> OperationResult:
        """Remove a category; slots already assigned to it keep the id."""

        async def _delete() -> OperationResult:
            if not await self._categories.delete(category_id):
                return OperationResult.failed("Category not found.", FAILURE_NOT_FOUND)
            return OperationResult.ok(message="Category deleted.")

        return await self._guard("delete_category", _delete)

    async def delete_all_schedule_data(self) -> OperationResult:
        """Remove every schedule and achievement document owned by this planner."""
        if not self._durable:
            return OperationResult.failed("Data deletion is only available for signed-in accounts.")

        async def _delete_all() -> OperationResult:
            removed: Dict[str, int] = {}
            for collection in (SCHEDULES, ACHIEVEMENTS):
                documents = await self._storage.list_documents(collection)
                for document_id in documents:
                    async with self._locks.with_week_lock(document_id):
                        await self._storage.delete_document(collection, document_id)
                removed[collection] = len(documents)
            self._current = None
            emit_event("schedule_data_deleted", owner=self.owner, **removed)
            return OperationResult.ok(removed, message="All schedule data deleted.")

        return await self._guard("delete_all_schedule_data", _delete_all)


class PlannerRegistry:
    """One planner per user so week locks and refresh runners are shared per owner."""

    def __init__(self, settings: Optional[Settings] = None, preferences: Optional[PreferenceStore] = None) -> None:
        self._settings = settings
        self._preferences = preferences
        self._planners: Dict[str, StudyPlanner] = {}
        self._lock = RLock()

    def _resolved_settings(self) -> Settings:
        return self._settings or get_settings()

    def _preference_store(self) -> PreferenceStore:
        if self._preferences is None:
            self._preferences = default_preference_store()
        return self._preferences

    def _build(self, owner: str) -> StudyPlanner:
        if owner == DEMO_USER:
            path = self._resolved_settings().local_store_path
            storage = LocalDocumentStorage(Path(path) if path else None)
            return StudyPlanner(owner, storage, preferences=self._preference_store(), durable=False)
        return StudyPlanner(
            owner,
            DatabaseDocumentStorage(owner),
            preferences=self._preference_store(),
            mirror=LocalDocumentStorage(),
            durable=True,
        )

    def for_user(self, user: str) -> StudyPlanner:
        owner = user.strip().lower()
        if not owner:
            raise ValueError("User cannot be empty.")
        with self._lock:
            planner = self._planners.get(owner)
            if planner is None:
                planner = self._build(owner)
                self._planners[owner] = planner
            return planner

    def register(self, planner: StudyPlanner) -> None:
        with self._lock:
            self._planners[planner.owner] = planner

    def owners(self) -> List[str]:
        with self._lock:
            return sorted(self._planners)

    def clear(self) -> None:
        with self._lock:
            self._planners.clear()


planner_registry = PlannerRegistry()

__all__ = [
    "DEMO_USER",
    "FAILURE_INVALID",
    "FAILURE_NOT_FOUND",
    "FAILURE_STORAGE",
    "OperationResult",
    "PlannerRegistry",
    "StudyPlanner",
    "WeekState",
    "planner_registry",
]
