"""Local (gamified) task endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hearth.api.services import Services, get_services
from hearth.data.models import Recurrence, RewardStrategy
from hearth.ports.provider_port import NotFoundError

router = APIRouter()


def _recurrence(value: str | None, is_recurring: bool | None) -> Recurrence | None:
    """Older clients send isRecurring plus 'specific' for chosen weekdays."""
    if is_recurring is False:
        return Recurrence.NONE
    if value == "specific":
        return Recurrence.WEEKLY
    if value is None:
        return Recurrence.DAILY if is_recurring else None
    return Recurrence(value)


class LocalTaskFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    title: str | None = None
    description: str | None = None
    due_date: str | None = Field(default=None, alias="dueDate")
    assigned_to: list[str] | None = Field(default=None, alias="assignedTo")
    xp_reward: int | None = Field(default=None, alias="xpReward")
    gold_reward: int | None = Field(default=None, alias="goldReward")
    reward_strategy: RewardStrategy | None = Field(default=None, alias="rewardStrategy")
    is_recurring: bool | None = Field(default=None, alias="isRecurring")
    recurrence: str | None = None
    days: list[int] | None = None

    @field_validator("assigned_to", mode="before")
    @classmethod
    def single_assignee(cls, v):
        if v is None or isinstance(v, list):
            return v
        return [v]

    def updates(self) -> dict:
        fields = self.model_dump(exclude={"is_recurring", "recurrence"}, exclude_none=True)
        recurrence = _recurrence(self.recurrence, self.is_recurring)
        if recurrence is not None:
            fields["recurrence"] = recurrence
        return fields


class NewLocalTask(LocalTaskFields):
    title: str
    assigned_to: list[str] = Field(alias="assignedTo")


@router.get("/api/local-tasks")
async def list_local_tasks(services: Services = Depends(get_services)):
    return [t.to_dict() for t in services.local_tasks.list_all()]


@router.get("/api/local-tasks/user/{user_id}")
async def list_user_tasks(user_id: str, services: Services = Depends(get_services)):
    """Today's tasks for one user; finished recurring tasks start over."""
    return [t.to_dict() for t in services.local_tasks.list_for_user(user_id)]


@router.post("/api/local-tasks", status_code=201)
async def create_local_task(body: NewLocalTask, services: Services = Depends(get_services)):
    task = services.local_tasks.add_task(**body.updates())
    return task.to_dict()


@router.put("/api/local-tasks/{task_id}")
async def update_local_task(task_id: str, body: LocalTaskFields, services: Services = Depends(get_services)):
    task = services.local_tasks.update_task(task_id, body.updates())
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    return task.to_dict()


@router.delete("/api/local-tasks/{task_id}")
async def delete_local_task(task_id: str, services: Services = Depends(get_services)):
    if not services.local_tasks.delete_task(task_id):
        raise NotFoundError(f"Task {task_id} not found")
    return {"success": True}


@router.post("/api/local-tasks/{task_id}/complete")
async def complete_local_task(task_id: str, services: Services = Depends(get_services)):
    return services.ledger.complete(task_id).to_dict()


@router.post("/api/local-tasks/{task_id}/uncomplete")
async def uncomplete_local_task(task_id: str, services: Services = Depends(get_services)):
    return services.ledger.uncomplete(task_id).to_dict()


@router.post("/api/local-tasks/{task_id}/toggle")
async def toggle_local_task(task_id: str, services: Services = Depends(get_services)):
    return services.ledger.toggle(task_id).to_dict()
