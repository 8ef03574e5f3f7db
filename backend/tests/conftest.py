"""Shared fixtures for planner tests."""

from __future__ import annotations

import asyncio
import os
from typing import Dict, Optional, Set

os.environ.setdefault("STUDY_PLANNER_DATABASE_URL", "sqlite://")
os.environ.setdefault("STUDY_PLANNER_TIMEZONE", "UTC")

import pytest  # noqa: E402

from study_planner.planner import StudyPlanner  # noqa: E402
from study_planner.preferences import LocalPreferenceStore  # noqa: E402
from study_planner.storage.base import Document, StorageUnavailableError  # noqa: E402
from study_planner.storage.local import LocalDocumentStorage  # noqa: E402
from study_planner.telemetry import clear_listeners  # noqa: E402


class FlakyStorage:
    """Wraps a real storage and fails the selected operations while ``failing`` is set."""

    def __init__(self, inner: Optional[LocalDocumentStorage] = None, fail_on: Optional[Set[str]] = None) -> None:
        self.inner = inner or LocalDocumentStorage()
        self.failing = False
        self.fail_on = fail_on or {"get", "set", "delete", "list"}
        self.writes = 0

    def _check(self, operation: str) -> None:
        if self.failing and operation in self.fail_on:
            raise StorageUnavailableError(f"backend offline during {operation}")

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:
        self._check("get")
        return await self.inner.get_document(collection, document_id)

    async def set_document(self, collection: str, document_id: str, data: Document) -> None:
        self._check("set")
        self.writes += 1
        await self.inner.set_document(collection, document_id, data)

    async def delete_document(self, collection: str, document_id: str) -> None:
        self._check("delete")
        await self.inner.delete_document(collection, document_id)

    async def list_documents(self, collection: str) -> Dict[str, Document]:
        self._check("list")
        return await self.inner.list_documents(collection)



class YieldingStorage(LocalDocumentStorage):
    """In-memory storage that yields to the event loop around every read and write."""

    async def get_document(self, collection: str, document_id: str) -> Optional[Document]:
        await asyncio.sleep(0)
        document = await super().get_document(collection, document_id)
        await asyncio.sleep(0)
        return document

    async def set_document(self, collection: str, document_id: str, data: Document) -> None:
        await asyncio.sleep(0)
        await super().set_document(collection, document_id, data)

    async def delete_document(self, collection: str, document_id: str) -> None:
        await asyncio.sleep(0)
        await super().delete_document(collection, document_id)


@pytest.fixture()
def storage() -> LocalDocumentStorage:
    return LocalDocumentStorage()


@pytest.fixture()
def demo_planner(storage: LocalDocumentStorage) -> StudyPlanner:
    return StudyPlanner("demo", storage, preferences=LocalPreferenceStore(), durable=False)


@pytest.fixture()
def reset_telemetry():
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture()
def flaky_storage() -> FlakyStorage:
    return FlakyStorage()


@pytest.fixture()
def yielding_storage() -> YieldingStorage:
    return YieldingStorage()
