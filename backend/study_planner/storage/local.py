"""Ephemeral document storage used for demo sessions."""

from __future__ import annotations

import copy
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .base import Document, StorageUnavailableError

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalDocumentStorage:
    """In-process document store, optionally mirrored to a JSON file.

    Documents are kept as ``{collection: {id: {"data": ..., "updatedAt": ...}}}``
    so metadata never leaks into the payload returned to callers.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._memory: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _load_unlocked(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if self._path is None:
            return self._memory
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageUnavailableError(f"Local store at {self._path} is unreadable: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageUnavailableError(f"Local store at {self._path} is not a mapping")
        return raw

    def _write_unlocked(self, documents: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        if self._path is None:
            self._memory = documents
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as handle:
                json.dump(documents, handle, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageUnavailableError(f"Failed to write local store at {self._path}: {exc}") from exc

    def _get(self, collection: str, document_id: str) -> Optional[Document]:
        with self._lock:
            entry = self._load_unlocked().get(collection, {}).get(document_id)
            if entry is None:
                return None
            return copy.deepcopy(entry.get("data"))

    def _set(self, collection: str, document_id: str, data: Document) -> None:
        payload = copy.deepcopy(dict(data))
        with self._lock:
            documents = copy.deepcopy(self._load_unlocked())
            documents.setdefault(collection, {})[document_id] = {"data": payload, "updatedAt": _now_iso()}
            self._write_unlocked(documents)

    def _delete(self, collection: str, document_id: str) -> None:
        with self._lock:
            documents = copy.deepcopy(self._load_unlocked())
            bucket = documents.get(collection)
            if not bucket or document_id not in bucket:
                return
            del bucket[document_id]
            self._write_unlocked(documents)

    def _list(self, collection: str) -> Dict[str, Document]:
        with self._lock:
            bucket = self._load_unlocked().get(collection, {})
            return {document_id: copy.deepcopy(entry.get("data")) for document_id, entry in bucket.items()}

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:
        return self._get(collection, document_id)

    async def set_document(self, collection: str, document_id: str, data: Document) -> None:
        self._set(collection, document_id, data)

    async def delete_document(self, collection: str, document_id: str) -> None:
        self._delete(collection, document_id)

    async def list_documents(self, collection: str) -> Dict[str, Document]:
        return self._list(collection)

    def clear(self) -> None:
        with self._lock:
            self._write_unlocked({})


__all__ = ["LocalDocumentStorage"]
