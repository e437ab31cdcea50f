"""Cross-device sync blob, sync selections and queued notifications."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from hearth.api.services import Services, get_services
from hearth.data.models import Provider

router = APIRouter()


class SelectionBody(BaseModel):
    ids: list[str]


@router.get("/api/data")
async def get_data(services: Services = Depends(get_services)):
    return services.sync.get()


@router.post("/api/data")
async def save_data(payload: dict[str, Any] = Body(...), services: Services = Depends(get_services)):
    """Replace the whole blob. Last write wins."""
    services.sync.put(payload)
    return {"success": True}


@router.put("/api/selections/{user_id}/{provider}")
async def set_selection(
    user_id: str, provider: Provider, body: SelectionBody, services: Services = Depends(get_services)
):
    """Choose which calendars / task lists a user syncs, then re-aggregate."""
    result = await services.dashboard.set_selection(user_id, provider, body.ids)
    response: dict[str, Any] = {"success": True, "ids": list(dict.fromkeys(body.ids))}
    if result is not None:
        response.update(result.to_dict())
    return response


@router.get("/api/notifications")
async def drain_notifications(services: Services = Depends(get_services)):
    return {"notifications": services.notifier.drain()}
