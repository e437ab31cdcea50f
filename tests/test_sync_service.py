"""Tests for hearth.core.sync_service — the dashboard facade end to end.

Google is a small in-memory fake behind httpx.MockTransport; tokens come
from the FakeTokens fixture, storage is a temp SQLite file.
"""

import asyncio
import json
from datetime import date, datetime
from unittest.mock import patch

import httpx
import pytest

from hearth.adapters.client_factory import ClientFactory
from hearth.adapters.google_calendar import EventDraft
from hearth.adapters.google_photos import PickerPoller
from hearth.adapters.notification_queue import QueueNotifier
from hearth.core.aggregator import AggregationResult
from hearth.core.sync_service import DashboardSync
from hearth.data.models import AggregatedItem, ItemKind, Provider
from hearth.data.sync_store import ProfileStore, SelectionStore, SyncStore
from hearth.data.token_store import TokenStore
from hearth.integrations.photo_storage import PhotoStorage
from hearth.ports.provider_port import AuthExpired, NotFoundError, ProviderClientError


class FakeGoogle:
    """Just enough of Calendar v3, Tasks v1 and Picker v1 to drive the facade."""

    def __init__(self):
        self.tasks = {"L1": {"t1": {"id": "t1", "title": "Milk", "status": "needsAction"}}}
        self.events = {"primary": {"e1": {
            "id": "e1", "summary": "Dentist",
            "start": {"date": "2024-06-10"}, "end": {"date": "2024-06-11"},
        }}}
        self.fail = {}  # (method, path fragment) -> status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        method, path = request.method, request.url.path
        for (fail_method, fragment), status in self.fail.items():
            if method == fail_method and fragment in path:
                return httpx.Response(status, json={"error": {"message": "Request rejected"}})
        if request.url.host == "lh3.googleusercontent.com":
            return httpx.Response(200, content=b"image-bytes")
        body = json.loads(request.content) if request.content else {}

        if path.startswith("/tasks/v1/lists/"):
            parts = path.split("/")
            return self._resource(self.tasks.setdefault(parts[4], {}), parts[6:], method, body)
        if path.startswith("/calendar/v3/calendars/"):
            parts = path.split("/")
            return self._resource(self.events.setdefault(parts[4], {}), parts[6:], method, body)
        if path == "/v1/sessions" and method == "POST":
            return httpx.Response(200, json={"id": "s1", "pickerUri": "https://photos.google.com/picker/s1"})
        if path.startswith("/v1/sessions/"):
            if method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json={"id": "s1", "mediaItemsSet": True})
        if path == "/v1/mediaItems":
            return httpx.Response(200, json={"mediaItems": [
                {"id": "m1", "mediaFile": {"baseUrl": "https://lh3.googleusercontent.com/m1"}},
            ]})
        return httpx.Response(404)

    @staticmethod
    def _resource(store, rest, method, body):
        if not rest:
            if method == "GET":
                return httpx.Response(200, json={"items": list(store.values())})
            created = {"id": f"new-{len(store) + 1}", "status": "needsAction", **body}
            store[created["id"]] = created
            return httpx.Response(200, json=created)
        item_id = rest[0]
        if method == "DELETE":
            store.pop(item_id, None)
            return httpx.Response(204)
        store[item_id].update(body)
        return httpx.Response(200, json=store[item_id])


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def notifier():
    return QueueNotifier()


@pytest.fixture
def make_dashboard(tmp_db_path, tmp_path, fake_tokens, google_stub, google, notifier, make_account):
    sync = SyncStore(db_path=tmp_db_path)
    sync.put({
        "users": [{"id": 1, "name": "Mom", "color": "#e91e63"}],
        "selectedCalendars": {"1": ["primary"]},
        "selectedTaskLists": {"1": ["L1"]},
    })
    tokens = TokenStore(db_path=tmp_db_path)
    for provider in ("calendar", "tasks", "photos"):
        tokens.save(make_account(user_id="1", provider=provider))

    stub = google_stub(handler=google)

    def build(**overrides):
        options = {
            "lookback_months": 1, "lookahead_months": 1,
            "today": lambda: date(2024, 6, 15),
            "picker_poll_interval": 0.01, "picker_timeout": 5,
            "photo_storage": PhotoStorage(
                tmp_path / "storage", max_concurrent=2, transport=stub.transport, timeout=5
            ),
            **overrides,
        }
        return DashboardSync(
            sync, ProfileStore(sync), tokens, SelectionStore(sync),
            ClientFactory(fake_tokens, transport=stub.transport, retry_delay=0),
            notifier,
            **options,
        )

    return build


@pytest.fixture
def dashboard(make_dashboard):
    return make_dashboard()


def _patch_statuses(google):
    return [json.loads(r.content)["status"] for r in google.requests if r.method == "PATCH"]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_events_installs_tagged_items(self, dashboard, google):
        result = await dashboard.refresh_events()

        assert result.partial_errors == []
        item = dashboard.events.get("e1")
        assert item.title == "Dentist"
        assert item.source_name == "Mom"
        params = google.requests[0].url.params
        assert params["timeMin"] == "2024-05-15T00:00:00+00:00"
        assert params["timeMax"] == "2024-07-16T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_refresh_tasks(self, dashboard):
        await dashboard.refresh_tasks()
        assert [i.id for i in dashboard.tasks.items] == ["t1"]

    @pytest.mark.asyncio
    async def test_failed_source_becomes_partial_error(self, dashboard, google):
        google.fail[("GET", "/lists/L1/")] = 500
        result = await dashboard.refresh_tasks()
        assert result.to_dict()["partialErrors"][0]["type"] == "TransientFailure"
        assert len(dashboard.tasks) == 0

    @pytest.mark.asyncio
    async def test_superseded_refresh_is_not_installed(self, dashboard):
        class GatedAggregator:
            def __init__(self):
                self.gates = []

            async def fetch_all(self, accounts, selections, date_range, profiles=None):
                gate = asyncio.Event()
                self.gates.append(gate)
                run = len(self.gates)
                await gate.wait()
                return AggregationResult(items=[AggregatedItem(
                    id=f"run-{run}", kind=ItemKind.TASK, source_account_id="1",
                    source_calendar_id="L1", title=f"run {run}",
                )])

        gated = GatedAggregator()
        dashboard._aggregators[ItemKind.TASK] = gated

        older = asyncio.create_task(dashboard.refresh_tasks())
        await asyncio.sleep(0)
        newer = asyncio.create_task(dashboard.refresh_tasks())
        await asyncio.sleep(0)
        gated.gates[1].set()
        await newer
        gated.gates[0].set()
        older_result = await older

        assert older_result.items[0].id == "run-1"
        assert [i.id for i in dashboard.tasks.items] == ["run-2"]

    @pytest.mark.asyncio
    async def test_selection_change_reaggregates(self, dashboard, google):
        google.events["family"] = {"f1": {"id": "f1", "summary": "Picnic", "start": {"date": "2024-06-20"}}}

        result = await dashboard.set_selection("1", Provider.CALENDAR, ["family"])

        assert [i.id for i in result.items] == ["f1"]
        assert [i.id for i in dashboard.events.items] == ["f1"]

    @pytest.mark.asyncio
    async def test_photo_selection_needs_no_refresh(self, dashboard, google):
        assert await dashboard.set_selection("1", Provider.PHOTOS, ["album"]) is None
        assert google.requests == []


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestTaskCommands:
    @pytest.mark.asyncio
    async def test_toggle_twice_flips_twice(self, dashboard, google):
        await dashboard.refresh_tasks()

        await dashboard.toggle_task("t1")
        assert dashboard.tasks.get("t1").completed is True
        await dashboard.toggle_task("t1")
        assert dashboard.tasks.get("t1").completed is False

        assert _patch_statuses(google) == ["completed", "needsAction"]

    @pytest.mark.asyncio
    async def test_create_task_success(self, dashboard, google, notifier):
        await dashboard.create_task("1", "L1", "Bread")

        assert [i.title for i in dashboard.tasks.items] == ["Milk", "Bread"]
        assert not any(i.id.startswith("temp-") for i in dashboard.tasks.items)
        assert notifier.drain()[0]["message"] == "Task added"

    @pytest.mark.asyncio
    async def test_create_task_failure_rolls_back(self, dashboard, google, notifier):
        await dashboard.refresh_tasks()
        before = dashboard.tasks.to_list()
        google.fail[("POST", "/lists/L1/tasks")] = 400

        with pytest.raises(ProviderClientError):
            await dashboard.create_task("1", "L1", "Bread")

        assert dashboard.tasks.to_list() == before
        toast = notifier.drain()[0]
        assert toast["level"] == "error"
        assert "Request rejected" in toast["message"]

    @pytest.mark.asyncio
    async def test_rejected_token_prompts_reconnect(self, dashboard, google, notifier):
        await dashboard.refresh_tasks()
        google.fail[("DELETE", "/tasks/t1")] = 401

        with pytest.raises(AuthExpired):
            await dashboard.delete_task("t1")

        assert dashboard.tasks.get("t1") is not None
        assert notifier.drain()[0]["type"] == "reconnect"

    @pytest.mark.asyncio
    async def test_unknown_task(self, dashboard):
        with pytest.raises(NotFoundError):
            await dashboard.toggle_task("ghost")


class TestEventCommands:
    @pytest.mark.asyncio
    async def test_update_event_targets_its_calendar(self, dashboard, google):
        google.events["family"] = {"f1": {"id": "f1", "summary": "Picnic", "start": {"date": "2024-06-20"}}}
        await dashboard.set_selection("1", Provider.CALENDAR, ["family"])

        await dashboard.update_event("f1", EventDraft(summary="Beach", start=datetime(2024, 6, 21), all_day=True))

        patch = next(r for r in google.requests if r.method == "PATCH")
        assert patch.url.path.endswith("/calendars/family/events/f1")
        assert dashboard.events.get("f1").title == "Beach"

    @pytest.mark.asyncio
    async def test_delete_event(self, dashboard, google):
        await dashboard.refresh_events()
        await dashboard.delete_event("e1")
        assert dashboard.events.get("e1") is None
        assert "e1" not in google.events["primary"]

    @pytest.mark.asyncio
    async def test_create_event(self, dashboard, google):
        created = await dashboard.create_event("1", EventDraft(summary="Swim", start=datetime(2024, 6, 18, 9, 0)))
        assert created["title"] == "Swim"
        assert {i.title for i in dashboard.events.items} == {"Dentist", "Swim"}


# ---------------------------------------------------------------------------
# Photo picker
# ---------------------------------------------------------------------------


async def _wait_until_finished(dashboard, session_id):
    for _ in range(200):
        if dashboard.picker_status(session_id)["state"] != "active":
            return
        await asyncio.sleep(0.01)


class TestPicker:
    @pytest.mark.asyncio
    async def test_picked_photos_are_downloaded_and_stored(self, dashboard, notifier, tmp_db_path, tmp_path):
        started = await dashboard.start_picker("1")
        assert started["pickerUri"] == "https://photos.google.com/picker/s1"

        await _wait_until_finished(dashboard, "s1")
        status = await dashboard.cancel_picker("s1")

        assert status["state"] == "picked"
        assert (status["itemCount"], status["savedCount"]) == (1, 1)
        assert (tmp_path / "storage" / "m1.jpg").read_bytes() == b"image-bytes"
        photos = SyncStore(db_path=tmp_db_path).get_section("photos")
        assert photos["1"][0]["id"] == "m1"
        assert photos["1"][0]["url"] == "/api/storage/m1.jpg"
        assert any(n["message"] == "Added 1 photo(s)" for n in notifier.drain())

    @pytest.mark.asyncio
    async def test_failed_download_is_skipped(self, dashboard, google, tmp_db_path):
        google.fail[("GET", "/m1=")] = 404

        await dashboard.start_picker("1")
        await _wait_until_finished(dashboard, "s1")
        status = await dashboard.cancel_picker("s1")

        assert status["state"] == "picked"
        assert status["savedCount"] == 0
        assert SyncStore(db_path=tmp_db_path).get_section("photos") == {"1": []}

    @pytest.mark.asyncio
    async def test_unexpected_error_ends_the_session(self, dashboard, notifier):
        with patch.object(PickerPoller, "run", side_effect=RuntimeError("boom")):
            await dashboard.start_picker("1")
            status = await dashboard.cancel_picker("s1")

        assert status["state"] == "failed"
        assert status["error"] == "Unexpected error while picking photos"
        assert notifier.drain()[-1]["level"] == "error"

    @pytest.mark.asyncio
    async def test_finished_sessions_are_forgotten(self, make_dashboard):
        dashboard = make_dashboard(picker_retention=0)
        await dashboard.start_picker("1")
        await dashboard.cancel_picker("s1")

        with pytest.raises(NotFoundError):
            dashboard.picker_status("s1")
        assert dashboard._pickers == {}

    @pytest.mark.asyncio
    async def test_finished_sessions_kept_within_retention(self, make_dashboard):
        dashboard = make_dashboard(picker_retention=60)
        await dashboard.start_picker("1")
        await dashboard.cancel_picker("s1")

        assert dashboard.picker_status("s1")["state"] != "active"

    @pytest.mark.asyncio
    async def test_unknown_session(self, dashboard):
        with pytest.raises(NotFoundError):
            dashboard.picker_status("nope")
        with pytest.raises(NotFoundError):
            await dashboard.cancel_picker("nope")
