from __future__ import annotations

import asyncio
from datetime import date

import pytest

from study_planner.achievements import AchievementStatus
from study_planner.planner import (
    FAILURE_INVALID,
    FAILURE_NOT_FOUND,
    FAILURE_STORAGE,
    PlannerRegistry,
    StudyPlanner,
)
from study_planner.preferences import POLICY_PREFERENCE_KEY, InclusionPolicy, LocalPreferenceStore
from study_planner.schedule_keys import HOUR_KEYS, InvalidKeyError
from study_planner.storage.base import ACHIEVEMENTS, SCHEDULES
from study_planner.storage.local import LocalDocumentStorage
from study_planner.telemetry import TelemetryEvent, register_listener

WEEK = date(2024, 3, 4)
KEY = "2024-03-04_day1_hour10"


@pytest.mark.asyncio
async def test_schedule_record_and_cascade(demo_planner: StudyPlanner, storage: LocalDocumentStorage) -> None:
    assert (await demo_planner.add_slot(WEEK, "day1", "hour10", "math")).success
    saved = await demo_planner.save_achievement(WEEK, "day1", "hour10", "completed", "finished chapter 3")
    assert saved.success
    assert saved.data.comment == "finished chapter 3"

    stats = await demo_planner.week_stats(WEEK, ["math", "english"])
    assert stats.data["statistics"].category_minutes == {"math": 60, "english": 0}
    assert stats.data["statistics"].total_hours == 1.0

    deleted = await demo_planner.delete_slot(WEEK, "day1", "hour10")
    assert deleted.data == {"removed_key": KEY}
    assert KEY not in (await storage.get_document(ACHIEVEMENTS, "2024-03-04"))
    assert KEY not in demo_planner.current_week.achievements

    stats = await demo_planner.week_stats(WEEK, ["math", "english"])
    assert stats.data["statistics"].category_minutes == {"math": 0, "english": 0}


@pytest.mark.asyncio
async def test_clear_slot_keeps_the_achievement(demo_planner: StudyPlanner, storage: LocalDocumentStorage) -> None:
    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    await demo_planner.save_achievement(WEEK, "day1", "hour10", "partial")

    assert (await demo_planner.clear_slot(WEEK, "day1", "hour10")).success

    state = (await demo_planner.load_week(WEEK)).data
    assert state.grid["day1"]["hour10"] is None
    assert KEY in state.achievements


@pytest.mark.asyncio
async def test_saving_twice_keeps_record_identity(demo_planner: StudyPlanner) -> None:
    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    first = (await demo_planner.save_achievement(WEEK, "day1", "hour10", "partial")).data
    second = (await demo_planner.save_achievement(WEEK, "day1", "hour10", AchievementStatus.COMPLETED)).data
    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.status is AchievementStatus.COMPLETED


@pytest.mark.asyncio
async def test_invalid_inputs(demo_planner: StudyPlanner) -> None:
    assert (await demo_planner.add_slot(WEEK, "day1", "hour10", "  ")).failure == FAILURE_INVALID

    missing = await demo_planner.save_achievement(WEEK, "day2", "hour11", "completed")
    assert missing.failure == FAILURE_NOT_FOUND

    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    assert (await demo_planner.save_achievement(WEEK, "day1", "hour10", "excellent")).failure == FAILURE_INVALID

    with pytest.raises(InvalidKeyError):
        await demo_planner.delete_achievement("bogus")


@pytest.mark.asyncio
async def test_deleting_unknown_achievement_succeeds(demo_planner: StudyPlanner) -> None:
    assert (await demo_planner.delete_achievement("2024-03-04_day3_hour12")).success


@pytest.mark.asyncio
async def test_storage_failure_leaves_state_untouched(flaky_storage) -> None:
    planner = StudyPlanner("demo", flaky_storage, preferences=LocalPreferenceStore(), durable=False)
    await planner.add_slot(WEEK, "day1", "hour10", "math")
    before = planner.current_week

    flaky_storage.failing = True
    result = await planner.add_slot(WEEK, "day2", "hour10", "english")

    assert result.success is False
    assert result.failure == FAILURE_STORAGE
    assert planner.current_week is before
    assert planner.current_week.grid["day2"]["hour10"] is None


@pytest.mark.asyncio
async def test_repaired_week_is_written_back(demo_planner: StudyPlanner, storage, reset_telemetry) -> None:
    events: list[TelemetryEvent] = []
    register_listener(events.append)
    await storage.set_document(SCHEDULES, "2024-03-04", {"day1": {"hour10": {"categoryId": "math"}}})

    state = (await demo_planner.load_week("2024-03-06")).data

    stored = await storage.get_document(SCHEDULES, "2024-03-04")
    assert len(stored) == 7
    assert stored["day1"]["hour10"]["date"] == "2024-03-04"
    assert stored["day1"]["hour10"]["id"] == state.grid["day1"]["hour10"].id
    repaired = [event for event in events if event.name == "week_repaired"]
    assert repaired and repaired[0].payload["owner"] == "demo"


@pytest.mark.asyncio
async def test_untouched_week_is_not_written(flaky_storage) -> None:
    planner = StudyPlanner("demo", flaky_storage, preferences=LocalPreferenceStore(), durable=False)
    await planner.load_week(WEEK)
    assert flaky_storage.writes == 0


@pytest.mark.asyncio
async def test_policy_is_persisted_and_applied(storage) -> None:
    preferences = LocalPreferenceStore()
    planner = StudyPlanner("demo", storage, preferences=preferences, durable=False)
    await planner.add_slot(WEEK, "day1", "hour10", "math")
    assert (await planner.week_stats(WEEK)).data["statistics"].total_hours == 0.0

    assert (await planner.set_policy(InclusionPolicy.ALL_PLANNED)).success

    assert preferences.get(POLICY_PREFERENCE_KEY) == "false"
    assert (await planner.week_stats(WEEK)).data["statistics"].total_hours == 1.0
    assert StudyPlanner("demo", storage, preferences=preferences, durable=False).policy is InclusionPolicy.ALL_PLANNED


@pytest.mark.asyncio
async def test_superseded_refresh_returns_none(demo_planner: StudyPlanner) -> None:
    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    await demo_planner.save_achievement(WEEK, "day1", "hour10", "partial")

    stale = asyncio.create_task(demo_planner.refresh_all_time(debounce=0.05))
    await asyncio.sleep(0)
    fresh = await demo_planner.refresh_all_time()

    assert fresh.data.total_hours == 0.7
    assert await stale is None


@pytest.mark.asyncio
async def test_milestone_unlock_and_acknowledge(demo_planner: StudyPlanner) -> None:
    assert (await demo_planner.check_milestone()).data["milestone"] is None

    for day_key in ("day1", "day2"):
        for hour_key in HOUR_KEYS[:8]:
            await demo_planner.add_slot(WEEK, day_key, hour_key, "math")
    for day_key in ("day1", "day2"):
        for hour_key in HOUR_KEYS[:8]:
            if (day_key, hour_key) != ("day2", HOUR_KEYS[7]):
                await demo_planner.save_achievement(WEEK, day_key, hour_key, "completed")

    check = (await demo_planner.check_milestone()).data
    assert check["hours"] == 15.0
    assert check["milestone"].id == "ember"
    assert check["next"].id == "ripple"

    assert (await demo_planner.acknowledge_milestone("ember")).data == ["ember"]
    assert (await demo_planner.check_milestone()).data["milestone"] is None

    overview = (await demo_planner.milestone_overview()).data
    states = {item["milestone"].id: item["state"].value for item in overview}
    assert states["ember"] == "shown"
    assert states["ripple"] == "locked"


@pytest.mark.asyncio
async def test_goal_carries_forward(demo_planner: StudyPlanner) -> None:
    await demo_planner.save_goal(WEEK, 10, copy_to_next_week=True)
    await demo_planner.add_slot("2024-03-11", "day1", "hour9", "math")
    await demo_planner.save_achievement("2024-03-11", "day1", "hour9", "completed")

    result = (await demo_planner.get_goal("2024-03-13")).data

    assert result["goal"].week_id == "2024-03-11"
    assert result["goal"].total_goal_hours == 10
    assert result["progress"].percent == 10
    assert result["progress"].remaining_hours == 9.0
    assert (await demo_planner.save_goal(WEEK, -1)).failure == FAILURE_INVALID


@pytest.mark.asyncio
async def test_goal_is_not_carried_without_flag(demo_planner: StudyPlanner) -> None:
    await demo_planner.save_goal(WEEK, 10)
    assert (await demo_planner.get_goal("2024-03-11")).data["goal"] is None


@pytest.mark.asyncio
async def test_templates_are_redated_on_apply(demo_planner: StudyPlanner) -> None:
    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    await demo_planner.add_slot(WEEK, "day5", "hour18", "english")
    template = (await demo_planner.save_template("Exam week", WEEK)).data
    assert template.slot_count == 2

    assert (await demo_planner.apply_template(template.id, "2024-03-11")).success

    state = (await demo_planner.load_week("2024-03-11")).data
    assert state.grid["day1"]["hour10"].slot_date == date(2024, 3, 11)
    assert state.grid["day5"]["hour18"].slot_date == date(2024, 3, 15)
    assert state.grid["day1"]["hour10"].category_id == "math"
    assert [item.name for item in (await demo_planner.list_templates()).data] == ["Exam week"]


@pytest.mark.asyncio
async def test_apply_with_clear_drops_week_data(demo_planner: StudyPlanner, storage) -> None:
    await demo_planner.add_slot(WEEK, "day1", "hour10", "math")
    template = (await demo_planner.save_template("Light", WEEK)).data
    target = "2024-03-18"
    await demo_planner.add_slot(target, "day3", "hour14", "art")
    await demo_planner.save_achievement(target, "day3", "hour14", "completed")

    await demo_planner.apply_template(template.id, target, clear_existing=True)

    state = (await demo_planner.load_week(target)).data
    assert state.grid["day3"]["hour14"] is None
    assert state.grid["day1"]["hour10"].category_id == "math"
    assert state.achievements == {}
    assert await storage.get_document(ACHIEVEMENTS, target) is None


@pytest.mark.asyncio
async def test_missing_template(demo_planner: StudyPlanner) -> None:
    assert (await demo_planner.apply_template("template_missing", WEEK)).failure == FAILURE_NOT_FOUND
    await demo_planner.delete_template("template_missing")


@pytest.mark.asyncio
async def test_delete_all_requires_durable_account(demo_planner: StudyPlanner, storage) -> None:
    assert (await demo_planner.delete_all_schedule_data()).success is False

    planner = StudyPlanner("alice", storage, preferences=LocalPreferenceStore(), durable=True)
    await planner.add_slot(WEEK, "day1", "hour10", "math")
    await planner.save_achievement(WEEK, "day1", "hour10", "completed")
    await planner.add_slot("2024-03-11", "day1", "hour10", "math")

    result = await planner.delete_all_schedule_data()

    assert result.data == {SCHEDULES: 2, ACHIEVEMENTS: 1}
    assert await storage.list_documents(SCHEDULES) == {}
    assert await storage.list_documents(ACHIEVEMENTS) == {}
    assert planner.current_week is None


@pytest.mark.asyncio
async def test_range_analytics(demo_planner: StudyPlanner) -> None:
    await demo_planner.add_slot(WEEK, "day2", "hour9", "math")
    await demo_planner.save_achievement(WEEK, "day2", "hour9", "completed")

    result = (await demo_planner.range_analytics(date(2024, 3, 1), date(2024, 3, 10), ["math"])).data

    assert result["category_minutes"] == {"math": 60}
    by_label = {entry.bucket.label: entry for entry in result["series"]}
    assert by_label["2024-03-05"].completed_hours == 1.0
    assert (await demo_planner.range_analytics(date(2024, 3, 10), date(2024, 3, 1))).success is False


def test_registry_normalizes_users() -> None:
    registry = PlannerRegistry(preferences=LocalPreferenceStore())
    planner = registry.for_user(" Demo ")
    assert registry.for_user("demo") is planner
    assert registry.owners() == ["demo"]
    with pytest.raises(ValueError):
        registry.for_user("   ")


@pytest.mark.asyncio
async def test_policy_change_reaches_every_planner(storage) -> None:
    preferences = LocalPreferenceStore()
    alice = StudyPlanner("demo", storage, preferences=preferences, durable=False)
    bob = StudyPlanner("bob", LocalDocumentStorage(), preferences=preferences, durable=False)
    await bob.add_slot(WEEK, "day1", "hour10", "math")
    assert (await bob.week_stats(WEEK, ["math"])).data["statistics"].total_hours == 0.0

    await alice.set_policy(InclusionPolicy.ALL_PLANNED)

    assert bob.policy is InclusionPolicy.ALL_PLANNED
    stats = (await bob.week_stats(WEEK, ["math"])).data
    assert stats["policy"] is InclusionPolicy.ALL_PLANNED
    assert stats["statistics"].total_hours == 1.0


@pytest.mark.asyncio
async def test_concurrent_slot_and_record_writes_both_land(yielding_storage) -> None:
    planner = StudyPlanner("demo", yielding_storage, preferences=LocalPreferenceStore(), durable=False)
    await planner.add_slot(WEEK, "day1", "hour10", "math")

    added, saved = await asyncio.gather(
        planner.add_slot(WEEK, "day1", "hour11", "english"),
        planner.save_achievement(WEEK, "day1", "hour10", "completed"),
    )

    assert added.success and saved.success
    schedule = await yielding_storage.get_document(SCHEDULES, "2024-03-04")
    assert schedule["day1"]["hour10"]["categoryId"] == "math"
    assert schedule["day1"]["hour11"]["categoryId"] == "english"
    assert KEY in await yielding_storage.get_document(ACHIEVEMENTS, "2024-03-04")


@pytest.mark.asyncio
async def test_week_locks_are_released_after_use(demo_planner: StudyPlanner) -> None:
    for week in ("2024-03-04", "2024-03-11", "2024-03-18"):
        await demo_planner.add_slot(week, "day1", "hour10", "math")
        await demo_planner.save_achievement(week, "day1", "hour10", "completed")
        await demo_planner.delete_slot(week, "day1", "hour10")

    assert len(demo_planner.locks) == 0


def _slot_document(slot_id: str, slot_date: str) -> dict:
    return {"day1": {"hour10": {"id": slot_id, "categoryId": "math", "date": slot_date}}}


@pytest.mark.asyncio
async def test_cross_week_writes_do_not_deadlock(yielding_storage) -> None:
    planner = StudyPlanner("demo", yielding_storage, preferences=LocalPreferenceStore(), durable=False)
    await yielding_storage.set_document(SCHEDULES, "2024-03-04", _slot_document("slot-a", "2024-03-11"))
    await yielding_storage.set_document(SCHEDULES, "2024-03-11", _slot_document("slot-b", "2024-03-04"))

    first, second = await asyncio.wait_for(
        asyncio.gather(
            planner.save_achievement("2024-03-04", "day1", "hour10", "completed"),
            planner.save_achievement("2024-03-11", "day1", "hour10", "partial"),
        ),
        timeout=2,
    )
    assert first.data.record_date == date(2024, 3, 11)
    assert second.data.record_date == date(2024, 3, 4)
    assert "2024-03-11_day1_hour10" in await yielding_storage.get_document(ACHIEVEMENTS, "2024-03-11")

    removed = await asyncio.wait_for(
        asyncio.gather(
            planner.delete_slot("2024-03-04", "day1", "hour10"),
            planner.delete_slot("2024-03-11", "day1", "hour10"),
        ),
        timeout=2,
    )
    assert all(result.success for result in removed)
    assert await yielding_storage.get_document(ACHIEVEMENTS, "2024-03-11") == {}
    assert await yielding_storage.get_document(ACHIEVEMENTS, "2024-03-04") == {}
    assert len(planner.locks) == 0


@pytest.mark.asyncio
async def test_stats_default_to_stored_categories(demo_planner: StudyPlanner) -> None:
    categories = (await demo_planner.list_categories()).data
    math = next(category for category in categories if category.name == "Math")
    await demo_planner.add_slot(WEEK, "day1", "hour10", math.id)
    await demo_planner.save_achievement(WEEK, "day1", "hour10", "completed")

    minutes = (await demo_planner.week_stats(WEEK)).data["statistics"].category_minutes

    assert set(minutes) == {category.id for category in categories}
    assert minutes[math.id] == 60
    analytics = (await demo_planner.range_analytics(date(2024, 3, 1), date(2024, 3, 10))).data
    assert analytics["category_minutes"][math.id] == 60
