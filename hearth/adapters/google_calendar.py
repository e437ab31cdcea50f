"""Google Calendar adapter — Calendar API v3 over GoogleApiClient.

All Google-specific event shapes live here. Core modules only see the
normalized dicts produced by `normalize_event` and build new events from an
`EventDraft`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, field_validator

from hearth.integrations.google_api import GoogleApiClient

logger = logging.getLogger(__name__)

CALENDAR_API = "https://www.googleapis.com/calendar/v3"

_RRULES = {
    "daily": "RRULE:FREQ=DAILY",
    "weekly": "RRULE:FREQ=WEEKLY",
    "monthly": "RRULE:FREQ=MONTHLY",
    "yearly": "RRULE:FREQ=YEARLY",
}


def _cal(calendar_id: str) -> str:
    # Shared calendars have ids like "en.usa#holiday@group.v.calendar.google.com"
    return quote(calendar_id, safe="")


# ---------------------------------------------------------------------------
# Event shapes
# ---------------------------------------------------------------------------

class EventDraft(BaseModel):
    """A new or edited event, as entered on the kiosk.

    JSON example:
    {
        "summary": "Dentist",
        "start": "2024-06-14T16:00:00",
        "end": null,
        "all_day": false,
        "time_zone": "Europe/London",
        "repeat": "weekly",
        "attendees": ["mom@example.com"]
    }
    """
    summary: str
    description: str = ""
    location: str = ""
    start: datetime
    end: datetime | None = None      # default: start + 1 hour
    all_day: bool = False
    time_zone: str = "UTC"
    repeat: str | None = None        # daily | weekly | monthly | yearly
    attendees: list[str] = []
    color_id: str | None = None
    reminder_minutes: list[int] | None = None  # None → calendar defaults
    calendar_id: str = "primary"

    @field_validator("summary")
    @classmethod
    def summary_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("summary must not be empty")
        return v.strip()

    @field_validator("repeat")
    @classmethod
    def known_repeat(cls, v: str | None) -> str | None:
        if v is None or v.lower() in ("", "none", "does not repeat"):
            return None
        if v.lower() not in _RRULES:
            raise ValueError(f"repeat must be one of {sorted(_RRULES)}")
        return v.lower()


def build_event_body(draft: EventDraft) -> dict:
    """Construct a Google Calendar API event body from an EventDraft."""
    body: dict[str, Any] = {
        "summary": draft.summary,
        "description": draft.description,
        "location": draft.location,
    }

    if draft.all_day:
        start_day = draft.start.date()
        # Google's all-day end date is exclusive
        end_day = draft.end.date() if draft.end and draft.end.date() > start_day else start_day
        body["start"] = {"date": start_day.isoformat()}
        body["end"] = {"date": (end_day + timedelta(days=1)).isoformat()}
    else:
        end = draft.end or draft.start + timedelta(hours=1)
        body["start"] = {"dateTime": draft.start.isoformat(), "timeZone": draft.time_zone}
        body["end"] = {"dateTime": end.isoformat(), "timeZone": draft.time_zone}

    if draft.repeat:
        body["recurrence"] = [_RRULES[draft.repeat]]
    if draft.attendees:
        body["attendees"] = [{"email": a} for a in draft.attendees]
    if draft.color_id:
        body["colorId"] = str(draft.color_id)
    if draft.reminder_minutes is not None:
        body["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": m} for m in draft.reminder_minutes],
        }
    return body


def normalize_event(event: dict, calendar_id: str = "primary") -> dict:
    """Map a Google event to the shape the kiosk and aggregator use."""
    start = event.get("start", {})
    end = event.get("end", {})
    organizer = event.get("organizer", {})
    return {
        "id": event.get("id", ""),
        "title": event.get("summary") or "(No title)",
        "description": event.get("description", ""),
        "location": event.get("location", ""),
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "allDay": "dateTime" not in start,
        "completed": False,
        "status": event.get("status", "confirmed"),
        "colorId": event.get("colorId"),
        "recurrence": event.get("recurrence"),
        "recurringEventId": event.get("recurringEventId"),
        "attendees": event.get("attendees", []),
        "organizer": organizer.get("displayName") or organizer.get("email", ""),
        "reminders": event.get("reminders", {"useDefault": True}),
        "htmlLink": event.get("htmlLink", ""),
        "calendarId": calendar_id,
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GoogleCalendarClient:
    """Typed Calendar v3 calls for one user."""

    def __init__(self, api: GoogleApiClient) -> None:
        self._api = api

    async def list_calendars(self) -> list[dict]:
        calendars: list[dict] = []
        page_token = None
        while True:
            params = {"pageToken": page_token} if page_token else None
            data = await self._api.get(f"{CALENDAR_API}/users/me/calendarList", params=params) or {}
            for item in data.get("items", []):
                calendars.append(
                    {
                        "id": item["id"],
                        "summary": item.get("summaryOverride") or item.get("summary", ""),
                        "primary": item.get("primary", False),
                        "backgroundColor": item.get("backgroundColor"),
                        "accessRole": item.get("accessRole"),
                    }
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.debug("User %s has %d calendar(s)", self._api.user_id, len(calendars))
        return calendars

    async def list_events(
        self, calendar_id: str, time_min: str, time_max: str, page_size: int = 250
    ) -> list[dict]:
        """All (expanded) events of one calendar in [time_min, time_max)."""
        events: list[dict] = []
        params: dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": page_size,
        }
        while True:
            data = await self._api.get(f"{CALENDAR_API}/calendars/{_cal(calendar_id)}/events", params=params) or {}
            events.extend(
                normalize_event(e, calendar_id)
                for e in data.get("items", [])
                if e.get("status") != "cancelled"
            )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        logger.debug("Fetched %d event(s) from calendar %s", len(events), calendar_id)
        return events

    async def create_event(self, draft: EventDraft) -> dict:
        created = await self._api.post(
            f"{CALENDAR_API}/calendars/{_cal(draft.calendar_id)}/events",
            json=build_event_body(draft),
        )
        logger.info("Event created: '%s' on %s", draft.summary, draft.start.date().isoformat())
        return normalize_event(created or {}, draft.calendar_id)

    async def update_event(self, event_id: str, draft: EventDraft) -> dict:
        updated = await self._api.patch(
            f"{CALENDAR_API}/calendars/{_cal(draft.calendar_id)}/events/{quote(event_id, safe='')}",
            json=build_event_body(draft),
        )
        logger.info("Event %s updated", event_id)
        return normalize_event(updated or {}, draft.calendar_id)

    async def delete_event(self, event_id: str, calendar_id: str = "primary") -> None:
        await self._api.delete(
            f"{CALENDAR_API}/calendars/{_cal(calendar_id)}/events/{quote(event_id, safe='')}"
        )
        logger.info("Event %s deleted from calendar %s", event_id, calendar_id)
