"""Milestone catalog, unlock evaluation and the shown-milestone store."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence, Set

from pydantic import BaseModel, Field, ValidationError

from .storage.base import MILESTONE_CATALOG, SHOWN_MILESTONES, DocumentStorage, StorageUnavailableError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

SHOWN_DOCUMENT_ID = "shown"
CATALOG_DOCUMENT_ID = "catalog"


class MilestoneEntry(BaseModel):
    id: str
    threshold_hours: float = Field(ge=0)
    title: str
    message: str = ""
    reward_name: str = ""
    element: Optional[str] = None


class MilestoneState(str, Enum):
    LOCKED = "locked"
    ELIGIBLE = "eligible"
    SHOWN = "shown"


def _entry(entry_id: str, hours: int, message: str, reward_name: str, element: str) -> MilestoneEntry:
    return MilestoneEntry(
        id=entry_id,
        threshold_hours=hours,
        title=f"{hours} study hours reached",
        message=message,
        reward_name=reward_name,
        element=element,
    )


DEFAULT_CATALOG: List[MilestoneEntry] = [
    _entry("ember", 15, "Your study streak caught fire.", "Ember", "fire"),
    _entry("ripple", 30, "Knowledge is starting to flow.", "Ripple", "water"),
    _entry("sprout", 50, "The seeds you planted are growing.", "Sprout", "grass"),
    _entry("spark", 100, "A flash of insight.", "Spark", "electric"),
    _entry("current", 150, "Steady progress, steady current.", "Current", "water"),
    _entry("drift", 200, "Two hundred hours of focus.", "Drift", "water"),
    _entry("gale", 250, "Your learning has taken flight.", "Gale", "flying"),
    _entry("tidal", 300, "Three hundred hours. Keep going.", "Tidal", "water"),
]


def sort_catalog(catalog: Iterable[MilestoneEntry]) -> List[MilestoneEntry]:
    return sorted(catalog, key=lambda entry: entry.threshold_hours)


def unlocked_milestones(hours: float, catalog: Sequence[MilestoneEntry]) -> List[MilestoneEntry]:
    return [entry for entry in sort_catalog(catalog) if entry.threshold_hours <= hours]


def next_milestone(hours: float, catalog: Sequence[MilestoneEntry]) -> Optional[MilestoneEntry]:
    for entry in sort_catalog(catalog):
        if entry.threshold_hours > hours:
            return entry
    return None


def evaluate(
    hours: float,
    catalog: Sequence[MilestoneEntry],
    shown: Iterable[str],
) -> Optional[MilestoneEntry]:
    """Return the highest unlocked entry unless it has already been shown.

    Lower entries that were skipped over are never surfaced; only the highest
    eligible threshold is considered.
    """
    unlocked = unlocked_milestones(hours, catalog)
    if not unlocked:
        return None
    highest = unlocked[-1]
    if highest.id in set(shown):
        return None
    return highest


def milestone_state(entry: MilestoneEntry, hours: float, shown: Iterable[str]) -> MilestoneState:
    if entry.id in set(shown):
        return MilestoneState.SHOWN
    if entry.threshold_hours <= hours:
        return MilestoneState.ELIGIBLE
    return MilestoneState.LOCKED


def parse_catalog(document: Optional[dict]) -> Optional[List[MilestoneEntry]]:
    if not document:
        return None
    raw_entries = document.get("entries")
    if not isinstance(raw_entries, list) or not raw_entries:
        return None
    try:
        return sort_catalog(MilestoneEntry.model_validate(item) for item in raw_entries)
    except ValidationError as exc:
        logger.warning("Ignoring invalid milestone catalog override: %s", exc)
        return None


async def load_catalog(storage: Optional[DocumentStorage]) -> List[MilestoneEntry]:
    """Catalog override stored under ``milestoneCatalog/catalog``, else the default."""
    if storage is None:
        return list(DEFAULT_CATALOG)
    try:
        document = await storage.get_document(MILESTONE_CATALOG, CATALOG_DOCUMENT_ID)
    except StorageUnavailableError as exc:
        logger.warning("Milestone catalog unavailable, using default: %s", exc)
        return list(DEFAULT_CATALOG)
    return parse_catalog(document) or list(DEFAULT_CATALOG)


def _ids_from_document(document: Optional[dict]) -> FrozenSet[str]:
    if not document:
        return frozenset()
    raw = document.get("ids")
    if not isinstance(raw, list):
        return frozenset()
    return frozenset(item for item in raw if isinstance(item, str) and item)


def _ids_to_document(ids: Iterable[str]) -> dict[str, Any]:
    return {"ids": sorted(set(ids))}


class ShownMilestoneStore:
    """Two-tier shown-milestone set: durable backend plus a local mirror.

    The durable store is the source of truth once it holds any ids. The mirror
    is written through on every change and answers reads while the durable
    store is unreachable. When the durable store comes back empty, it is
    initialised from the mirror; a non-empty durable set is only ever extended
    with ids marked during the outage, never replaced by the mirror.
    """

    def __init__(self, durable: Optional[DocumentStorage], mirror: DocumentStorage) -> None:
        self._durable = durable
        self._mirror = mirror
        self._pending_backfill = False
        self._pending_ids: Set[str] = set()

    @property
    def pending_backfill(self) -> bool:
        return self._pending_backfill

    async def _read_mirror(self) -> FrozenSet[str]:
        try:
            return _ids_from_document(await self._mirror.get_document(SHOWN_MILESTONES, SHOWN_DOCUMENT_ID))
        except StorageUnavailableError as exc:
            logger.warning("Shown-milestone mirror unreadable: %s", exc)
            return frozenset()

    async def _write_mirror(self, ids: FrozenSet[str]) -> None:
        try:
            await self._mirror.set_document(SHOWN_MILESTONES, SHOWN_DOCUMENT_ID, _ids_to_document(ids))
        except StorageUnavailableError as exc:
            logger.warning("Failed to update shown-milestone mirror: %s", exc)

    async def load(self) -> FrozenSet[str]:
        mirror_ids = await self._read_mirror()
        if self._durable is None:
            return mirror_ids
        try:
            durable_ids = _ids_from_document(
                await self._durable.get_document(SHOWN_MILESTONES, SHOWN_DOCUMENT_ID)
            )
        except StorageUnavailableError as exc:
            logger.warning("Durable shown-milestone store unavailable, using mirror: %s", exc)
            self._pending_backfill = True
            return mirror_ids
        return await self._reconcile(durable_ids, mirror_ids)

    async def _reconcile(self, durable_ids: FrozenSet[str], mirror_ids: FrozenSet[str]) -> FrozenSet[str]:
        assert self._durable is not None
        if not durable_ids and mirror_ids:
            target = mirror_ids
        elif self._pending_ids - durable_ids:
            target = durable_ids | self._pending_ids
        else:
            self._pending_backfill = False
            self._pending_ids.clear()
            if durable_ids != mirror_ids:
                await self._write_mirror(durable_ids)
            return durable_ids

        try:
            await self._durable.set_document(SHOWN_MILESTONES, SHOWN_DOCUMENT_ID, _ids_to_document(target))
        except StorageUnavailableError as exc:
            logger.warning("Shown-milestone backfill failed: %s", exc)
            self._pending_backfill = True
            return target

        logger.info("Backfilled %d shown milestones into durable store", len(target))
        emit_event("milestone_backfill", count=len(target), from_empty=not durable_ids)
        self._pending_backfill = False
        self._pending_ids.clear()
        await self._write_mirror(target)
        return target

    async def mark_shown(self, milestone_id: str) -> FrozenSet[str]:
        """Add ``milestone_id`` to the shown set; re-adding an existing id is a no-op."""
        current = await self.load()
        if milestone_id in current:
            return current
        updated = current | {milestone_id}
        await self._write_mirror(updated)
        if self._durable is not None:
            try:
                await self._durable.set_document(SHOWN_MILESTONES, SHOWN_DOCUMENT_ID, _ids_to_document(updated))
            except StorageUnavailableError as exc:
                logger.warning("Durable shown-milestone write failed, kept in mirror: %s", exc)
                self._pending_backfill = True
                self._pending_ids.add(milestone_id)
        emit_event("milestone_shown", milestone_id=milestone_id)
        return updated


__all__ = [
    "DEFAULT_CATALOG",
    "MilestoneEntry",
    "MilestoneState",
    "ShownMilestoneStore",
    "evaluate",
    "load_catalog",
    "milestone_state",
    "next_milestone",
    "parse_catalog",
    "sort_catalog",
    "unlocked_milestones",
]
