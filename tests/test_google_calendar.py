"""Tests for hearth.adapters.google_calendar — event bodies, normalization, paging."""

from datetime import datetime

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from hearth.adapters.google_calendar import (
    EventDraft,
    GoogleCalendarClient,
    build_event_body,
    normalize_event,
)
from hearth.data.models import Provider
from hearth.integrations.google_api import GoogleApiClient


def _calendar(fake_tokens, stub):
    api = GoogleApiClient(fake_tokens, "1", Provider.CALENDAR, transport=stub.transport, retry_delay=0)
    return GoogleCalendarClient(api)


# ---------------------------------------------------------------------------
# EventDraft / build_event_body
# ---------------------------------------------------------------------------


class TestBuildEventBody:
    def test_timed_event_defaults_to_one_hour(self):
        draft = EventDraft(summary="Dentist", start=datetime(2024, 6, 14, 16, 0), time_zone="Europe/London")
        body = build_event_body(draft)
        assert body["start"] == {"dateTime": "2024-06-14T16:00:00", "timeZone": "Europe/London"}
        assert body["end"]["dateTime"] == "2024-06-14T17:00:00"

    def test_all_day_end_is_exclusive(self):
        draft = EventDraft(summary="Camp", start=datetime(2024, 6, 14), end=datetime(2024, 6, 16), all_day=True)
        body = build_event_body(draft)
        assert body["start"] == {"date": "2024-06-14"}
        assert body["end"] == {"date": "2024-06-17"}

    def test_single_all_day(self):
        draft = EventDraft(summary="Birthday", start=datetime(2024, 6, 14), all_day=True)
        assert build_event_body(draft)["end"] == {"date": "2024-06-15"}

    def test_optional_fields(self):
        draft = EventDraft(
            summary="Swim", start=datetime(2024, 6, 14, 9, 0), repeat="Weekly",
            attendees=["a@test.com"], color_id="5", reminder_minutes=[10, 60],
        )
        body = build_event_body(draft)
        assert body["recurrence"] == ["RRULE:FREQ=WEEKLY"]
        assert body["attendees"] == [{"email": "a@test.com"}]
        assert body["colorId"] == "5"
        assert body["reminders"]["useDefault"] is False
        assert [o["minutes"] for o in body["reminders"]["overrides"]] == [10, 60]

    def test_no_reminders_uses_calendar_default(self):
        draft = EventDraft(summary="Swim", start=datetime(2024, 6, 14, 9, 0))
        body = build_event_body(draft)
        assert "reminders" not in body
        assert "recurrence" not in body

    def test_does_not_repeat(self):
        assert EventDraft(summary="x", start=datetime(2024, 6, 14), repeat="Does not repeat").repeat is None

    def test_unknown_repeat_rejected(self):
        with pytest.raises(PydanticValidationError):
            EventDraft(summary="x", start=datetime(2024, 6, 14), repeat="fortnightly")

    def test_blank_summary_rejected(self):
        with pytest.raises(PydanticValidationError):
            EventDraft(summary="   ", start=datetime(2024, 6, 14))


class TestNormalizeEvent:
    def test_timed_event(self):
        event = normalize_event({
            "id": "e1", "summary": "Dentist",
            "start": {"dateTime": "2024-06-14T16:00:00+01:00"},
            "end": {"dateTime": "2024-06-14T17:00:00+01:00"},
            "organizer": {"email": "mom@example.com"},
        }, "primary")
        assert event["title"] == "Dentist"
        assert event["allDay"] is False
        assert event["organizer"] == "mom@example.com"
        assert event["calendarId"] == "primary"

    def test_all_day_and_untitled(self):
        event = normalize_event({"id": "e2", "start": {"date": "2024-06-14"}, "end": {"date": "2024-06-15"}})
        assert event["title"] == "(No title)"
        assert event["allDay"] is True
        assert event["start"] == "2024-06-14"


# ---------------------------------------------------------------------------
# GoogleCalendarClient
# ---------------------------------------------------------------------------


class TestListEvents:
    @pytest.mark.asyncio
    async def test_follows_pages_and_skips_cancelled(self, fake_tokens, google_stub):
        stub = google_stub([
            httpx.Response(200, json={
                "items": [
                    {"id": "a", "summary": "A", "start": {"date": "2024-06-01"}},
                    {"id": "gone", "status": "cancelled"},
                ],
                "nextPageToken": "p2",
            }),
            httpx.Response(200, json={"items": [{"id": "b", "summary": "B", "start": {"date": "2024-06-02"}}]}),
        ])

        events = await _calendar(fake_tokens, stub).list_events(
            "family#x@group.calendar.google.com", "2024-05-01T00:00:00Z", "2024-08-01T00:00:00Z",
        )

        assert [e["id"] for e in events] == ["a", "b"]
        first, second = stub.requests
        assert first.url.path.endswith("/calendars/family#x@group.calendar.google.com/events")
        assert first.url.params["singleEvents"] == "true"
        assert first.url.params["orderBy"] == "startTime"
        assert second.url.params["pageToken"] == "p2"
        assert events[0]["calendarId"] == "family#x@group.calendar.google.com"


class TestCalendarCrud:
    @pytest.mark.asyncio
    async def test_list_calendars(self, fake_tokens, google_stub):
        stub = google_stub([httpx.Response(200, json={"items": [
            {"id": "primary-id", "summary": "Me", "primary": True},
            {"id": "fam", "summary": "Family", "summaryOverride": "Our family"},
        ]})])
        calendars = await _calendar(fake_tokens, stub).list_calendars()
        assert [c["summary"] for c in calendars] == ["Me", "Our family"]
        assert calendars[0]["primary"] is True

    @pytest.mark.asyncio
    async def test_create_event_posts_body(self, fake_tokens, google_stub):
        stub = google_stub([httpx.Response(200, json={
            "id": "new", "summary": "Dentist", "start": {"dateTime": "2024-06-14T16:00:00Z"},
        })])
        draft = EventDraft(summary="Dentist", start=datetime(2024, 6, 14, 16, 0))

        created = await _calendar(fake_tokens, stub).create_event(draft)

        assert created["id"] == "new"
        assert stub.requests[0].method == "POST"
        assert str(stub.requests[0].url).endswith("/calendars/primary/events")

    @pytest.mark.asyncio
    async def test_update_event_is_patch(self, fake_tokens, google_stub):
        stub = google_stub([httpx.Response(200, json={"id": "e1", "summary": "Moved"})])
        draft = EventDraft(summary="Moved", start=datetime(2024, 6, 15, 9, 0))
        await _calendar(fake_tokens, stub).update_event("e1", draft)
        assert stub.requests[0].method == "PATCH"
        assert str(stub.requests[0].url).endswith("/events/e1")

    @pytest.mark.asyncio
    async def test_delete_event(self, fake_tokens, google_stub):
        stub = google_stub([httpx.Response(204)])
        assert await _calendar(fake_tokens, stub).delete_event("e1", "fam") is None
        assert stub.requests[0].method == "DELETE"
