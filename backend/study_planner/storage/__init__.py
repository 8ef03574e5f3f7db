"""Document storage backends used by the planner engine."""

from .base import (
    ACHIEVEMENTS,
    CATEGORIES,
    MILESTONE_CATALOG,
    SCHEDULES,
    SHOWN_MILESTONES,
    TEMPLATES,
    WEEKLY_GOALS,
    Document,
    DocumentStorage,
    StorageUnavailableError,
)
from .database import DatabaseDocumentStorage
from .local import LocalDocumentStorage

__all__ = [
    "ACHIEVEMENTS",
    "CATEGORIES",
    "DatabaseDocumentStorage",
    "Document",
    "DocumentStorage",
    "LocalDocumentStorage",
    "MILESTONE_CATALOG",
    "SCHEDULES",
    "SHOWN_MILESTONES",
    "StorageUnavailableError",
    "TEMPLATES",
    "WEEKLY_GOALS",
]
