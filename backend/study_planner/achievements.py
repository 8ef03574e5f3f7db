"""Achievement records and the backend-agnostic achievement store."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .calendar_dates import normalize
from .concurrency import WeekLockRegistry
from .schedule_keys import InvalidKeyError, parse_key, week_id_for_key
from .storage.base import ACHIEVEMENTS, DocumentStorage

logger = logging.getLogger(__name__)

METADATA_KEYS = frozenset({"updatedAt", "updated_at"})


class AchievementStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AchievementRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: f"achievement_{uuid.uuid4().hex[:12]}")
    status: AchievementStatus
    comment: str = ""
    day_key: str = Field(alias="dayKey")
    hour_key: str = Field(alias="hourKey")
    record_date: date = Field(alias="date")
    created_at: datetime = Field(default_factory=_now, alias="createdAt")

    @field_validator("record_date", mode="before")
    @classmethod
    def _normalize_record_date(cls, value: Any) -> date:
        return normalize(value)

    @field_validator("comment", mode="before")
    @classmethod
    def _coerce_comment(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


AchievementMap = Dict[str, AchievementRecord]


def new_record(key: str, status: AchievementStatus | str, comment: str = "") -> AchievementRecord:
    """Build a fresh record whose day/hour/date fields come from ``key``."""
    parsed = parse_key(key)
    return AchievementRecord(
        status=AchievementStatus(status),
        comment=comment,
        day_key=parsed.day_key,
        hour_key=parsed.hour_key,
        record_date=parsed.date_str,
    )


def parse_achievement_document(document: Optional[Mapping[str, Any]]) -> AchievementMap:
    """Validate a stored week document, skipping metadata and malformed entries."""
    records: AchievementMap = {}
    if not document:
        return records
    for key, payload in document.items():
        if key in METADATA_KEYS or not payload:
            continue
        try:
            parse_key(key)
            records[key] = AchievementRecord.model_validate(payload)
        except (InvalidKeyError, ValidationError) as exc:
            logger.warning("Skipping malformed achievement %s: %s", key, exc)
    return records


def achievement_map_to_document(records: Mapping[str, AchievementRecord]) -> Dict[str, Any]:
    return {key: record.to_document() for key, record in records.items()}


class AchievementStore:
    """Sparse composite-key -> record map persisted as one document per week.

    The backend has no per-key update, so upsert and delete re-read the whole
    week document and write it back while holding that week's lock.
    """

    def __init__(self, storage: DocumentStorage, locks: Optional[WeekLockRegistry] = None) -> None:
        self._storage = storage
        self._locks = locks or WeekLockRegistry()

    @property
    def locks(self) -> WeekLockRegistry:
        return self._locks

    async def get(self, week_id: str) -> Optional[AchievementMap]:
        document = await self._storage.get_document(ACHIEVEMENTS, week_id)
        if document is None:
            return None
        return parse_achievement_document(document)

    async def record_for(self, week_id: str, key: str) -> Optional[AchievementRecord]:
        records = await self.get(week_id)
        return records.get(key) if records else None

    async def upsert(self, week_id: str, key: str, record: AchievementRecord) -> AchievementMap:
        _require_key_in_week(week_id, key)
        async with self._locks.with_week_lock(week_id):
            current = await self.get(week_id) or {}
            updated = dict(current)
            updated[key] = record
            await self._storage.set_document(ACHIEVEMENTS, week_id, achievement_map_to_document(updated))
            return updated

    async def delete(self, week_id: str, key: str) -> AchievementMap:
        """Remove ``key``; a missing document or key counts as success."""
        async with self._locks.with_week_lock(week_id):
            current = await self.get(week_id)
            if not current or key not in current:
                return dict(current or {})
            updated = {existing: record for existing, record in current.items() if existing != key}
            await self._storage.set_document(ACHIEVEMENTS, week_id, achievement_map_to_document(updated))
            return updated

    async def list_all(self) -> Dict[str, AchievementMap]:
        documents = await self._storage.list_documents(ACHIEVEMENTS)
        return {week_id: parse_achievement_document(document) for week_id, document in documents.items()}


def _require_key_in_week(week_id: str, key: str) -> None:
    owner_week = week_id_for_key(key)
    if owner_week != week_id:
        raise InvalidKeyError(f"Key {key!r} belongs to week {owner_week}, not {week_id}")


__all__ = [
    "AchievementMap",
    "AchievementRecord",
    "AchievementStatus",
    "AchievementStore",
    "achievement_map_to_document",
    "new_record",
    "parse_achievement_document",
]
