"""Document-storage contract shared by the demo and durable backends."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

SCHEDULES = "schedules"
ACHIEVEMENTS = "achievements"
SHOWN_MILESTONES = "shownMilestones"
WEEKLY_GOALS = "weeklyGoals"
TEMPLATES = "templates"
MILESTONE_CATALOG = "milestoneCatalog"
CATEGORIES = "categories"

Document = Dict[str, Any]


class StorageUnavailableError(RuntimeError):
    """Raised when a storage backend cannot complete a call."""


class DocumentStorage(Protocol):
    """Key-value access to whole documents addressed by (collection, id)."""

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:  # pragma: no cover - protocol
        ...

    async def set_document(self, collection: str, document_id: str, data: Document) -> None:  # pragma: no cover - protocol
        ...

    async def delete_document(self, collection: str, document_id: str) -> None:  # pragma: no cover - protocol
        ...

    async def list_documents(self, collection: str) -> Dict[str, Document]:  # pragma: no cover - protocol
        ...


__all__ = [
    "ACHIEVEMENTS",
    "CATEGORIES",
    "Document",
    "DocumentStorage",
    "MILESTONE_CATALOG",
    "SCHEDULES",
    "SHOWN_MILESTONES",
    "StorageUnavailableError",
    "TEMPLATES",
    "WEEKLY_GOALS",
]
