"""Durable document storage for authenticated sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import session_scope
from ..repositories.study_documents import StudyDocumentRepository, study_documents
from .base import Document, StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseDocumentStorage:
    """Document storage scoped to one owner, backed by SQLAlchemy.

    Blocking database work runs in a worker thread so callers can await it
    from the event loop.
    """

    def __init__(self, owner: str, repository: Optional[StudyDocumentRepository] = None) -> None:
        self._owner = owner
        self._repo = repository or study_documents

    @property
    def owner(self) -> str:
        return self._owner

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except (SQLAlchemyError, RuntimeError, OSError) as exc:
            logger.warning("Database %s failed for owner=%s: %s", operation, self._owner, exc)
            raise StorageUnavailableError(f"Database {operation} failed: {exc}") from exc

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:
        def _get() -> Optional[Dict[str, Any]]:
            with session_scope(commit=False) as session:
                return self._repo.get(session, self._owner, collection, document_id)

        return await self._run("get", _get)

    async def set_document(self, collection: str, document_id: str, data: Document) -> None:
        payload = dict(data)

        def _set() -> None:
            with session_scope() as session:
                self._repo.upsert(session, self._owner, collection, document_id, payload)

        await self._run("set", _set)

    async def delete_document(self, collection: str, document_id: str) -> None:
        def _delete() -> None:
            with session_scope() as session:
                self._repo.delete(session, self._owner, collection, document_id)

        await self._run("delete", _delete)

    async def list_documents(self, collection: str) -> Dict[str, Document]:
        def _list() -> Dict[str, Dict[str, Any]]:
            with session_scope(commit=False) as session:
                return self._repo.list_collection(session, self._owner, collection)

        return await self._run("list", _list)

    async def delete_collection(self, collection: str) -> int:
        def _delete_all() -> int:
            with session_scope() as session:
                return self._repo.delete_collection(session, self._owner, collection)

        return await self._run("delete_collection", _delete_all)


__all__ = ["DatabaseDocumentStorage"]
