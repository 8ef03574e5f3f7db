"""Schedule repository: load, repair and persist week grids."""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Optional

from .calendar_dates import format_date, try_normalize
from .concurrency import WeekLockRegistry
from .storage.base import SCHEDULES, DocumentStorage
from .week_grid import GridRepairResult, WeekGrid, grid_to_document, repair

logger = logging.getLogger(__name__)


def week_start_from_id(week_id: str) -> date:
    parsed = try_normalize(week_id)
    if parsed is None:
        raise ValueError(f"Invalid week identifier: {week_id!r}")
    return parsed


class ScheduleRepository:
    """Reads week grids through the repairer and writes them back whole."""

    def __init__(self, storage: DocumentStorage, locks: Optional[WeekLockRegistry] = None) -> None:
        self._storage = storage
        self._locks = locks or WeekLockRegistry()

    async def load_week(self, week_start: date) -> GridRepairResult:
        """Return the repaired grid, persisting the repair only when it changed something.

        A week that was never stored yields an empty grid and writes nothing.
        """
        week_id = format_date(week_start)
        document = await self._storage.get_document(SCHEDULES, week_id)
        result = repair(document, week_start)
        if document is not None and result.changed:
            async with self._locks.with_week_lock(week_id):
                await self._storage.set_document(SCHEDULES, week_id, grid_to_document(result.grid))
        return result

    async def save_week(self, week_start: date, grid: WeekGrid) -> None:
        week_id = format_date(week_start)
        async with self._locks.with_week_lock(week_id):
            await self._storage.set_document(SCHEDULES, week_id, grid_to_document(grid))

    async def delete_week(self, week_start: date) -> None:
        week_id = format_date(week_start)
        async with self._locks.with_week_lock(week_id):
            await self._storage.delete_document(SCHEDULES, week_id)

    async def list_all(self) -> Dict[str, WeekGrid]:
        """Every stored week keyed by week identifier; unreadable ids are skipped."""
        documents = await self._storage.list_documents(SCHEDULES)
        grids: Dict[str, WeekGrid] = {}
        for week_id, document in documents.items():
            week_start = try_normalize(week_id)
            if week_start is None or week_start.isoweekday() != 1:
                logger.warning("Skipping schedule document with invalid week id %s", week_id)
                continue
            grids[week_id] = repair(document, week_start).grid
        return grids


__all__ = ["ScheduleRepository", "week_start_from_id"]
