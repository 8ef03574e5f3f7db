"""Reusable week templates captured from a grid and re-dated on apply."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .schedule_keys import DAY_KEYS, HOUR_KEYS, is_day_key, is_hour_key
from .storage.base import TEMPLATES, DocumentStorage
from .week_grid import WeekGrid, empty_grid, iter_slots, new_slot, with_slot

logger = logging.getLogger(__name__)

TemplateSlots = Dict[str, Dict[str, str]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_template_id() -> str:
    return f"template_{uuid.uuid4().hex[:12]}"


class WeekTemplate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_template_id)
    name: str = Field(min_length=1)
    slots: TemplateSlots = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now, alias="createdAt")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Template name cannot be blank.")
        return stripped

    @field_validator("slots")
    @classmethod
    def _known_positions(cls, value: TemplateSlots) -> TemplateSlots:
        return {
            day_key: {hour_key: category for hour_key, category in hours.items() if is_hour_key(hour_key) and category}
            for day_key, hours in value.items()
            if is_day_key(day_key)
        }

    @property
    def slot_count(self) -> int:
        return sum(len(hours) for hours in self.slots.values())

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def template_from_grid(name: str, grid: WeekGrid) -> WeekTemplate:
    """Keep only category ids by position; ids and dates are regenerated on apply."""
    slots: TemplateSlots = {}
    for day_key, hour_key, slot in iter_slots(grid):
        slots.setdefault(day_key, {})[hour_key] = slot.category_id
    return WeekTemplate(name=name, slots=slots)


def apply_template(
    template: WeekTemplate,
    week_start: date,
    existing: Optional[WeekGrid] = None,
    clear_existing: bool = False,
) -> WeekGrid:
    """Lay the template onto ``week_start``'s week with fresh ids and re-dated slots.

    Existing slots stay where the template is empty unless ``clear_existing``.
    """
    grid = empty_grid(week_start) if clear_existing or existing is None else existing
    for day_key in DAY_KEYS:
        hours = template.slots.get(day_key) or {}
        for hour_key in HOUR_KEYS:
            category_id = hours.get(hour_key)
            if category_id:
                grid = with_slot(grid, day_key, hour_key, new_slot(week_start, day_key, category_id))
    return grid


class TemplateRepository:
    def __init__(self, storage: DocumentStorage) -> None:
        self._storage = storage

    async def save(self, template: WeekTemplate) -> WeekTemplate:
        await self._storage.set_document(TEMPLATES, template.id, template.to_document())
        logger.info("Saved template %s with %d slots", template.id, template.slot_count)
        return template

    async def get(self, template_id: str) -> Optional[WeekTemplate]:
        document = await self._storage.get_document(TEMPLATES, template_id)
        if not document:
            return None
        try:
            return WeekTemplate.model_validate({"id": template_id, **document})
        except ValidationError as exc:
            logger.warning("Ignoring malformed template %s: %s", template_id, exc)
            return None

    async def list(self) -> List[WeekTemplate]:
        documents = await self._storage.list_documents(TEMPLATES)
        templates: List[WeekTemplate] = []
        for template_id, document in documents.items():
            try:
                templates.append(WeekTemplate.model_validate({"id": template_id, **document}))
            except ValidationError as exc:
                logger.warning("Ignoring malformed template %s: %s", template_id, exc)
        return sorted(templates, key=lambda template: template.created_at)

    async def delete(self, template_id: str) -> None:
        await self._storage.delete_document(TEMPLATES, template_id)


__all__ = [
    "TemplateRepository",
    "WeekTemplate",
    "apply_template",
    "new_template_id",
    "template_from_grid",
]
