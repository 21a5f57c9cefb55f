"""Scheduled analysis tasks owned by the current user."""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.schedule import ScheduleTaskCreate, ScheduleTaskResponse, ScheduleTaskUpdate
from decyphers.services import schedule_service

router = APIRouter(prefix="/api/v1/schedule-tasks", tags=["schedule-tasks"])


@router.get("", response_model=Envelope[list[ScheduleTaskResponse]])
async def list_tasks(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[list[ScheduleTaskResponse]]:
    tasks = await schedule_service.list_tasks(db, current_user)
    return ok([ScheduleTaskResponse.model_validate(t) for t in tasks])


@router.post("", response_model=Envelope[ScheduleTaskResponse], status_code=status.HTTP_201_CREATED)
async def create_task(
    body: ScheduleTaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ScheduleTaskResponse]:
    """Create a task; its first ``execute_at`` is the next cron occurrence."""
    task = await schedule_service.create_task(db, current_user, body.cron_expression, body.parameter)
    await db.refresh(task)
    return ok(ScheduleTaskResponse.model_validate(task), "Schedule task created successfully")


@router.get("/{task_id}", response_model=Envelope[ScheduleTaskResponse])
async def get_task(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ScheduleTaskResponse]:
    task = await schedule_service.get_task(db, current_user, task_id)
    return ok(ScheduleTaskResponse.model_validate(task))


@router.put("/{task_id}", response_model=Envelope[ScheduleTaskResponse])
async def update_task(
    task_id: uuid.UUID,
    body: ScheduleTaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[ScheduleTaskResponse]:
    task = await schedule_service.update_task(
        db, current_user, task_id, body.model_dump(exclude_unset=True)
    )
    await db.refresh(task)
    return ok(ScheduleTaskResponse.model_validate(task), "Schedule task updated successfully")


@router.delete("/{task_id}", response_model=Envelope[None])
async def delete_task(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[None]:
    await schedule_service.delete_task(db, current_user, task_id)
    return ok(message="Schedule task deleted successfully")
