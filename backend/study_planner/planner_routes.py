"""REST endpoints exposing the study planner to the web client."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from .achievements import AchievementStatus
from .planner import (
    FAILURE_NOT_FOUND,
    FAILURE_STORAGE,
    OperationResult,
    PlannerRegistry,
    StudyPlanner,
    WeekState,
    planner_registry,
)
from .preferences import InclusionPolicy

router = APIRouter(prefix="/api/planner", tags=["planner"])
logger = logging.getLogger(__name__)


class SlotRequest(BaseModel):
    category_id: str = Field(..., min_length=1)


class AchievementRequest(BaseModel):
    status: AchievementStatus
    comment: str = Field(default="", max_length=500)


class PolicyRequest(BaseModel):
    include_achievements_in_stats: bool


class GoalRequest(BaseModel):
    total_goal_hours: float = Field(..., ge=0, le=168)
    copy_to_next_week: bool = False


class TemplateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    week: str


class ApplyTemplateRequest(BaseModel):
    week: str
    clear_existing: bool = False


class CategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    color: str = Field(..., min_length=1, max_length=32)


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=60)
    color: Optional[str] = Field(default=None, min_length=1, max_length=32)


def get_planner_registry() -> PlannerRegistry:
    return planner_registry


def _planner(user: str, registry: PlannerRegistry) -> StudyPlanner:
    try:
        return registry.for_user(user)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _unwrap(result: Optional[OperationResult]) -> Dict[str, Any]:
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Request was superseded by a newer one.",
        )
    if not result.success:
        if result.failure == FAILURE_STORAGE:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        elif result.failure == FAILURE_NOT_FOUND:
            code = status.HTTP_404_NOT_FOUND
        else:
            code = status.HTTP_422_UNPROCESSABLE_ENTITY
        raise HTTPException(status_code=code, detail=result.message)
    data = result.data
    if isinstance(data, WeekState):
        data = data.to_payload()
    return {"message": result.message, "data": jsonable_encoder(data, by_alias=True)}


async def _call(awaitable) -> Dict[str, Any]:  # type: ignore[no-untyped-def]
    try:
        result = await awaitable
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _unwrap(result)


@router.get("/{user}/weeks/{week}", status_code=status.HTTP_200_OK)
async def get_week(user: str, week: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).load_week(week))


@router.put("/{user}/weeks/{week}/slots/{day_key}/{hour_key}", status_code=status.HTTP_200_OK)
async def add_slot(
    user: str,
    week: str,
    day_key: str,
    hour_key: str,
    payload: SlotRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).add_slot(week, day_key, hour_key, payload.category_id))


@router.post("/{user}/weeks/{week}/slots/{day_key}/{hour_key}/clear", status_code=status.HTTP_200_OK)
async def clear_slot(
    user: str,
    week: str,
    day_key: str,
    hour_key: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).clear_slot(week, day_key, hour_key))


@router.delete("/{user}/weeks/{week}/slots/{day_key}/{hour_key}", status_code=status.HTTP_200_OK)
async def delete_slot(
    user: str,
    week: str,
    day_key: str,
    hour_key: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).delete_slot(week, day_key, hour_key))


@router.put("/{user}/weeks/{week}/achievements/{day_key}/{hour_key}", status_code=status.HTTP_200_OK)
async def save_achievement(
    user: str,
    week: str,
    day_key: str,
    hour_key: str,
    payload: AchievementRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    planner = _planner(user, registry)
    return await _call(planner.save_achievement(week, day_key, hour_key, payload.status, payload.comment))


@router.delete("/{user}/achievements/{key}", status_code=status.HTTP_200_OK)
async def delete_achievement(
    user: str,
    key: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).delete_achievement(key))


@router.get("/{user}/weeks/{week}/stats", status_code=status.HTTP_200_OK)
async def week_stats(
    user: str,
    week: str,
    category: Optional[List[str]] = Query(None),
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).week_stats(week, category))


@router.get("/{user}/policy", status_code=status.HTTP_200_OK)
def get_policy(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    policy = _planner(user, registry).policy
    return {
        "policy": policy,
        "include_achievements_in_stats": policy is InclusionPolicy.ACHIEVEMENTS_ONLY,
    }


@router.put("/{user}/policy", status_code=status.HTTP_200_OK)
async def set_policy(
    user: str,
    payload: PolicyRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    policy = (
        InclusionPolicy.ACHIEVEMENTS_ONLY if payload.include_achievements_in_stats else InclusionPolicy.ALL_PLANNED
    )
    return await _call(_planner(user, registry).set_policy(policy))


@router.get("/{user}/stats/all-time", status_code=status.HTTP_200_OK)
async def all_time_stats(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).refresh_all_time())


@router.get("/{user}/analytics", status_code=status.HTTP_200_OK)
async def range_analytics(
    user: str,
    start: date,
    end: date,
    category: Optional[List[str]] = Query(None),
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).range_analytics(start, end, category))


@router.get("/{user}/milestones", status_code=status.HTTP_200_OK)
async def milestone_overview(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).milestone_overview())


@router.get("/{user}/milestones/check", status_code=status.HTTP_200_OK)
async def check_milestone(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).check_milestone())


@router.post("/{user}/milestones/{milestone_id}/ack", status_code=status.HTTP_200_OK)
async def acknowledge_milestone(
    user: str,
    milestone_id: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).acknowledge_milestone(milestone_id))


@router.get("/{user}/weeks/{week}/goal", status_code=status.HTTP_200_OK)
async def get_goal(user: str, week: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).get_goal(week))


@router.put("/{user}/weeks/{week}/goal", status_code=status.HTTP_200_OK)
async def save_goal(
    user: str,
    week: str,
    payload: GoalRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    planner = _planner(user, registry)
    return await _call(planner.save_goal(week, payload.total_goal_hours, payload.copy_to_next_week))


@router.get("/{user}/templates", status_code=status.HTTP_200_OK)
async def list_templates(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).list_templates())


@router.post("/{user}/templates", status_code=status.HTTP_201_CREATED)
async def save_template(
    user: str,
    payload: TemplateRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).save_template(payload.name, payload.week))


@router.post("/{user}/templates/{template_id}/apply", status_code=status.HTTP_200_OK)
async def apply_template(
    user: str,
    template_id: str,
    payload: ApplyTemplateRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    planner = _planner(user, registry)
    return await _call(planner.apply_template(template_id, payload.week, payload.clear_existing))


@router.delete("/{user}/templates/{template_id}", status_code=status.HTTP_200_OK)
async def delete_template(
    user: str,
    template_id: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).delete_template(template_id))


@router.get("/{user}/categories", status_code=status.HTTP_200_OK)
async def list_categories(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    return await _call(_planner(user, registry).list_categories())


@router.post("/{user}/categories", status_code=status.HTTP_201_CREATED)
async def add_category(
    user: str,
    payload: CategoryRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).add_category(payload.name, payload.color))


@router.patch("/{user}/categories/{category_id}", status_code=status.HTTP_200_OK)
async def update_category(
    user: str,
    category_id: str,
    payload: CategoryUpdateRequest,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    planner = _planner(user, registry)
    return await _call(planner.update_category(category_id, name=payload.name, color=payload.color))


@router.delete("/{user}/categories/{category_id}", status_code=status.HTTP_200_OK)
async def delete_category(
    user: str,
    category_id: str,
    registry: PlannerRegistry = Depends(get_planner_registry),
) -> Dict[str, Any]:
    return await _call(_planner(user, registry).delete_category(category_id))


@router.delete("/{user}/data", status_code=status.HTTP_200_OK)
async def delete_all_data(user: str, registry: PlannerRegistry = Depends(get_planner_registry)) -> Dict[str, Any]:
    logger.info("Deleting all schedule data for user=%s", user)
    return await _call(_planner(user, registry).delete_all_schedule_data())


__all__ = ["get_planner_registry", "router"]
