"""Week grid construction and repair of persisted schedule documents."""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .calendar_dates import format_date, is_week_start, try_normalize
from .schedule_keys import DAY_KEYS, HOUR_KEYS, day_index, is_day_key, is_hour_key, make_key
from .telemetry import emit_event

logger = logging.getLogger(__name__)

METADATA_KEYS = frozenset({"updatedAt", "updated_at"})


class ScheduleSlot(BaseModel):
    """A planned study hour. Immutable so grids can share slot instances."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    category_id: str = Field(alias="categoryId")
    slot_date: date = Field(alias="date")

    def to_document(self) -> Dict[str, Any]:
        return {"id": self.id, "categoryId": self.category_id, "date": format_date(self.slot_date)}


WeekGrid = Dict[str, Dict[str, Optional[ScheduleSlot]]]


class GridRepairResult(BaseModel):
    grid: WeekGrid
    changed: bool = False
    issues: List[str] = Field(default_factory=list)


def _require_week_start(week_start: date) -> None:
    if not is_week_start(week_start):
        raise ValueError(f"Week grids must start on a Monday, got {week_start.isoformat()}")


def new_slot_id() -> str:
    return f"schedule_{uuid.uuid4().hex[:12]}"


def empty_grid(week_start: date) -> WeekGrid:
    _require_week_start(week_start)
    return {day_key: {hour_key: None for hour_key in HOUR_KEYS} for day_key in DAY_KEYS}


def new_slot(week_start: date, day_key: str, category_id: str, *, slot_id: Optional[str] = None) -> ScheduleSlot:
    _require_week_start(week_start)
    return ScheduleSlot(
        id=slot_id or new_slot_id(),
        category_id=category_id,
        slot_date=week_start + timedelta(days=day_index(day_key)),
    )


def _repair_slot(
    raw: Any,
    day_date: date,
    location: str,
    issues: List[str],
) -> Optional[ScheduleSlot]:
    if raw is None:
        return None
    if isinstance(raw, ScheduleSlot):
        return raw
    if not isinstance(raw, Mapping):
        issues.append(f"{location}: unsupported slot payload replaced with null")
        return None

    category_id = raw.get("categoryId", raw.get("category_id"))
    if not isinstance(category_id, str) or not category_id.strip():
        if raw:
            issues.append(f"{location}: slot without category replaced with null")
        return None

    raw_date = raw.get("date", raw.get("slot_date"))
    slot_date = try_normalize(raw_date) if raw_date not in (None, "") else None
    if slot_date is None:
        issues.append(f"{location}: missing or invalid date recomputed from week start")
        slot_date = day_date

    slot_id = raw.get("id")
    if not isinstance(slot_id, str) or not slot_id.strip():
        issues.append(f"{location}: missing id synthesized")
        slot_id = new_slot_id()

    return ScheduleSlot(id=slot_id, category_id=category_id, slot_date=slot_date)


def _canonical(value: Any) -> Any:
    if isinstance(value, ScheduleSlot):
        return value.to_document()
    if isinstance(value, Mapping):
        return {str(key): _canonical(item) for key, item in value.items() if key not in METADATA_KEYS}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    if isinstance(value, date):
        return value.isoformat()
    return value


def grid_to_document(grid: WeekGrid) -> Dict[str, Dict[str, Optional[Dict[str, Any]]]]:
    return {
        day_key: {
            hour_key: slot.to_document() if slot is not None else None
            for hour_key, slot in hours.items()
        }
        for day_key, hours in grid.items()
    }


def repair(persisted: Optional[Mapping[str, Any]], week_start: date) -> GridRepairResult:
    """Reshape a persisted (possibly partial or malformed) grid into all 98 slots.

    Missing day/hour keys become ``None``; slots lacking a category are dropped;
    missing or unparseable dates are recomputed as ``week_start + day offset``;
    missing ids are synthesized. ``changed`` reports whether the serialized
    form differs from the input, so callers only write back real repairs.
    """
    _require_week_start(week_start)
    if persisted is None:
        return GridRepairResult(grid=empty_grid(week_start))
    source: Mapping[str, Any] = persisted if isinstance(persisted, Mapping) else {}
    issues: List[str] = []
    grid: WeekGrid = {}

    for offset, day_key in enumerate(DAY_KEYS):
        raw_day = source.get(day_key)
        if not isinstance(raw_day, Mapping):
            issues.append(f"{day_key}: missing day filled with empty slots")
            raw_day = {}
        day_date = week_start + timedelta(days=offset)
        grid[day_key] = {
            hour_key: _repair_slot(raw_day.get(hour_key), day_date, f"{day_key}/{hour_key}", issues)
            for hour_key in HOUR_KEYS
        }

    unknown = [key for key in source if key not in DAY_KEYS and key not in METADATA_KEYS]
    if unknown:
        issues.append(f"dropped unknown keys: {', '.join(sorted(map(str, unknown)))}")

    changed = _canonical(source) != grid_to_document(grid)
    if changed:
        logger.info("Repaired schedule grid for week %s (%d issues)", format_date(week_start), len(issues))
        emit_event(
            "schedule_repaired",
            week_id=format_date(week_start),
            issue_count=len(issues),
            issues=issues[:10],
        )
    return GridRepairResult(grid=grid, changed=changed, issues=issues)


def grid_from_document(document: Optional[Mapping[str, Any]], week_start: date) -> WeekGrid:
    return repair(document, week_start).grid


def with_slot(grid: WeekGrid, day_key: str, hour_key: str, slot: Optional[ScheduleSlot]) -> WeekGrid:
    """Return a copy of ``grid`` with one slot replaced; the input is left untouched."""
    if not is_day_key(day_key) or not is_hour_key(hour_key):
        raise ValueError(f"Unknown slot position {day_key}/{hour_key}")
    updated = {key: dict(hours) for key, hours in grid.items()}
    updated.setdefault(day_key, {})[hour_key] = slot
    return updated


def iter_slots(grid: Mapping[str, Mapping[str, Optional[ScheduleSlot]]]) -> Iterator[Tuple[str, str, ScheduleSlot]]:
    for day_key, hours in grid.items():
        if not hours:
            continue
        for hour_key, slot in hours.items():
            if slot is not None and slot.category_id:
                yield day_key, hour_key, slot


def slot_key(day_key: str, hour_key: str, slot: ScheduleSlot) -> str:
    return make_key(slot.slot_date, day_key, hour_key)


def planned_slot_count(grid: WeekGrid) -> int:
    return sum(1 for _ in iter_slots(grid))


__all__ = [
    "GridRepairResult",
    "ScheduleSlot",
    "WeekGrid",
    "empty_grid",
    "grid_from_document",
    "grid_to_document",
    "iter_slots",
    "new_slot",
    "new_slot_id",
    "planned_slot_count",
    "repair",
    "slot_key",
    "with_slot",
]
