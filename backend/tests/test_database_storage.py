from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from study_planner.db.session import dispose_engine, session_scope
from study_planner.planner import StudyPlanner
from study_planner.preferences import LocalPreferenceStore
from study_planner.repositories.study_documents import StudyDocumentRepository, study_documents
from study_planner.storage.base import ACHIEVEMENTS, SCHEDULES, StorageUnavailableError
from study_planner.storage.database import DatabaseDocumentStorage
from study_planner.storage.local import LocalDocumentStorage


@pytest.fixture(autouse=True)
def fresh_database():
    dispose_engine()
    yield
    dispose_engine()


class BrokenRepository(StudyDocumentRepository):
    def get(self, session, owner, collection, document_id):
        raise SQLAlchemyError("connection refused")


@pytest.mark.asyncio
async def test_documents_are_scoped_per_owner() -> None:
    alice = DatabaseDocumentStorage("alice")
    await alice.set_document(SCHEDULES, "2024-03-04", {"day1": {}})

    assert await DatabaseDocumentStorage("ALICE ").get_document(SCHEDULES, "2024-03-04") == {"day1": {}}
    assert await DatabaseDocumentStorage("bob").get_document(SCHEDULES, "2024-03-04") is None

    await alice.set_document(SCHEDULES, "2024-03-04", {"day2": {}})
    assert await alice.list_documents(SCHEDULES) == {"2024-03-04": {"day2": {}}}


@pytest.mark.asyncio
async def test_delete_and_delete_collection_are_audited() -> None:
    storage = DatabaseDocumentStorage("carol")
    await storage.set_document(ACHIEVEMENTS, "2024-03-04", {"k": 1})
    await storage.set_document(ACHIEVEMENTS, "2024-03-11", {"k": 2})

    await storage.delete_document(ACHIEVEMENTS, "2024-03-04")
    await storage.delete_document(ACHIEVEMENTS, "2024-03-04")
    assert await storage.delete_collection(ACHIEVEMENTS) == 1
    assert await storage.list_documents(ACHIEVEMENTS) == {}

    with session_scope(commit=False) as session:
        event_types = sorted(event.event_type for event in study_documents.recent_audit_events(session, "carol"))
    assert event_types == ["collection_delete", "document_delete"]


@pytest.mark.asyncio
async def test_database_errors_become_storage_unavailable() -> None:
    storage = DatabaseDocumentStorage("dave", repository=BrokenRepository())
    with pytest.raises(StorageUnavailableError):
        await storage.get_document(SCHEDULES, "2024-03-04")


@pytest.mark.asyncio
async def test_durable_planner_cascade() -> None:
    storage = DatabaseDocumentStorage("erin")
    planner = StudyPlanner("erin", storage, preferences=LocalPreferenceStore(), mirror=LocalDocumentStorage())
    week = date(2024, 3, 4)

    await planner.add_slot(week, "day1", "hour10", "math")
    await planner.save_achievement(week, "day1", "hour10", "completed")
    assert "2024-03-04_day1_hour10" in await storage.get_document(ACHIEVEMENTS, "2024-03-04")

    await planner.delete_slot(week, "day1", "hour10")

    assert await storage.get_document(ACHIEVEMENTS, "2024-03-04") == {}
    assert (await planner.load_week(week)).data.grid["day1"]["hour10"] is None


@pytest.mark.asyncio
async def test_durable_shown_milestones_survive_a_new_planner() -> None:
    storage = DatabaseDocumentStorage("frank")
    first = StudyPlanner("frank", storage, preferences=LocalPreferenceStore())
    await first.acknowledge_milestone("ember")

    second = StudyPlanner("frank", storage, preferences=LocalPreferenceStore())
    overview = (await second.milestone_overview()).data
    assert {item["milestone"].id: item["state"].value for item in overview}["ember"] == "shown"
