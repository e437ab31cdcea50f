"""Aggregated Google Tasks endpoints and optimistic task commands."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from hearth.api.services import Services, get_services

router = APIRouter()


class NewGoogleTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: str = Field(alias="userId")
    list_id: str = Field(default="@default", alias="listId")
    title: str = Field(min_length=1)
    notes: str = ""
    due: str | None = None


@router.get("/api/tasks")
async def list_tasks(services: Services = Depends(get_services)):
    result = await services.dashboard.refresh_tasks()
    return result.to_dict()


@router.get("/api/tasks/lists/{user_id}")
async def list_task_lists(user_id: str, services: Services = Depends(get_services)):
    return await services.dashboard.list_task_lists(user_id)


@router.post("/api/tasks", status_code=201)
async def create_task(body: NewGoogleTask, services: Services = Depends(get_services)):
    return await services.dashboard.create_task(
        body.user_id, body.list_id, body.title, body.notes, body.due
    )


@router.post("/api/tasks/{task_id}/toggle")
async def toggle_task(task_id: str, services: Services = Depends(get_services)):
    return await services.dashboard.toggle_task(task_id)


@router.delete("/api/tasks/{task_id}")
async def delete_task(task_id: str, services: Services = Depends(get_services)):
    await services.dashboard.delete_task(task_id)
    return {"success": True}
