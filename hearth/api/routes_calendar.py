"""Aggregated calendar endpoints and optimistic event commands."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from hearth.adapters.google_calendar import EventDraft
from hearth.api.services import Services, get_services
from hearth.core.aggregator import DateRange

router = APIRouter()


class NewEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: str = Field(alias="userId")
    event: EventDraft


@router.get("/api/calendar/events")
async def list_events(
    start: date | None = None,
    end: date | None = None,
    services: Services = Depends(get_services),
):
    """Events of every linked account, merged; failed sources in partialErrors."""
    date_range = None
    if start is not None and end is not None:
        date_range = DateRange.from_dates(start, end)
    result = await services.dashboard.refresh_events(date_range)
    return result.to_dict()


@router.get("/api/calendar/calendars/{user_id}")
async def list_calendars(user_id: str, services: Services = Depends(get_services)):
    return await services.dashboard.list_calendars(user_id)


@router.post("/api/calendar/events", status_code=201)
async def create_event(body: NewEvent, services: Services = Depends(get_services)):
    return await services.dashboard.create_event(body.user_id, body.event)


@router.put("/api/calendar/events/{event_id}")
async def update_event(event_id: str, body: EventDraft, services: Services = Depends(get_services)):
    return await services.dashboard.update_event(event_id, body)


@router.delete("/api/calendar/events/{event_id}")
async def delete_event(event_id: str, services: Services = Depends(get_services)):
    await services.dashboard.delete_event(event_id)
    return {"success": True}
