"""
Hearth Kiosk — Dashboard sync facade.

One object the API talks to for everything Google-backed. It composes the
profile, token, selection and sync stores with the aggregator and the
command runner, and owns the kiosk's local copies of events and tasks.

Refreshes are sequenced per kind: when a newer refresh has started (for
example because a selection changed), an older one's result is returned
to its caller but never installed over the newer state.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from hearth.adapters.client_factory import ClientFactory
from hearth.adapters.google_calendar import EventDraft
from hearth.adapters.google_photos import (
    PickerPoller,
    PickerResult,
    PickerState,
    merge_media_items,
)
from hearth.core.aggregator import (
    AggregationResult,
    DateRange,
    MultiSourceAggregator,
    RequestSequencer,
)
from hearth.core.mutations import CommandRunner, ItemCollection
from hearth.data.models import AggregatedItem, ItemKind, Provider
from hearth.data.sync_store import ProfileStore, SelectionStore, SyncStore
from hearth.data.token_store import TokenStore
from hearth.integrations.photo_storage import PhotoStorage
from hearth.ports.notification_port import NotificationPort
from hearth.ports.provider_port import AuthExpired, AuthRequired, HearthError, NotFoundError

logger = logging.getLogger(__name__)

_PROVIDER_OF = {ItemKind.EVENT: Provider.CALENDAR, ItemKind.TASK: Provider.TASKS}


@dataclass
class PickerSession:
    user_id: str
    session_id: str
    picker_uri: str
    poller: PickerPoller
    task: asyncio.Task | None = None
    result: PickerResult | None = None
    error: str | None = None
    saved: int = 0
    finished_at: float | None = None  # monotonic

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "pickerUri": self.picker_uri,
            "state": self.poller.state.value,
            "itemCount": len(self.result.items) if self.result else 0,
            "savedCount": self.saved,
            "error": self.error,
        }


class DashboardSync:
    """Aggregated reads, optimistic writes and photo picking for the kiosk."""

    def __init__(
        self,
        sync: SyncStore,
        profiles: ProfileStore,
        tokens: TokenStore,
        selections: SelectionStore,
        clients: ClientFactory,
        notifier: NotificationPort,
        lookback_months: int | None = None,
        lookahead_months: int | None = None,
        today: Callable[[], date] = date.today,
        picker_poll_interval: float | None = None,
        picker_timeout: float | None = None,
        picker_retention: float | None = None,
        photo_storage: PhotoStorage | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        from hearth.config import settings

        self._sync = sync
        self._profiles = profiles
        self._tokens = tokens
        self._selections = selections
        self._clients = clients
        self._notifier = notifier
        self._lookback = lookback_months if lookback_months is not None else settings.CALENDAR_LOOKBACK_MONTHS
        self._lookahead = lookahead_months if lookahead_months is not None else settings.CALENDAR_LOOKAHEAD_MONTHS
        self._today = today
        self._picker_poll_interval = picker_poll_interval
        self._picker_timeout = picker_timeout
        self._picker_retention = (
            picker_retention if picker_retention is not None else settings.PICKER_RETENTION_SECONDS
        )
        self._photo_storage = photo_storage if photo_storage is not None else PhotoStorage()
        self._monotonic = monotonic

        self.events = ItemCollection()
        self.tasks = ItemCollection()
        self._collections = {ItemKind.EVENT: self.events, ItemKind.TASK: self.tasks}
        self._aggregators = {
            ItemKind.EVENT: MultiSourceAggregator(clients.calendar_fetcher(), ItemKind.EVENT),
            ItemKind.TASK: MultiSourceAggregator(clients.task_fetcher(), ItemKind.TASK),
        }
        self._sequencers = {kind: RequestSequencer() for kind in ItemKind}
        self._runner = CommandRunner(notifier)
        self._pickers: dict[str, PickerSession] = {}

    # ------------------------------------------------------------------
    # Aggregated reads
    # ------------------------------------------------------------------

    def default_range(self) -> DateRange:
        return DateRange.around(self._today(), self._lookback, self._lookahead)

    async def refresh_events(self, date_range: DateRange | None = None) -> AggregationResult:
        return await self._refresh(ItemKind.EVENT, date_range or self.default_range())

    async def refresh_tasks(self) -> AggregationResult:
        return await self._refresh(ItemKind.TASK, self.default_range())

    async def _refresh(self, kind: ItemKind, date_range: DateRange) -> AggregationResult:
        sequencer = self._sequencers[kind]
        token = sequencer.next()
        provider = _PROVIDER_OF[kind]

        result = await self._aggregators[kind].fetch_all(
            self._tokens.list_accounts(provider),
            self._selections.all(provider),
            date_range,
            {p.id: p for p in self._profiles.list_profiles()},
        )
        if sequencer.is_current(token):
            self._collections[kind].replace(result.items)
        else:
            logger.info("Discarding superseded %s refresh #%d", kind.value, token)
        return result

    async def set_selection(self, user_id: str, provider: Provider, ids: list[str]) -> AggregationResult | None:
        """Store a user's choice and re-aggregate the affected kind."""
        provider = Provider(provider)
        self._selections.set(user_id, provider, ids)
        if provider == Provider.CALENDAR:
            return await self.refresh_events()
        if provider == Provider.TASKS:
            return await self.refresh_tasks()
        return None

    async def list_calendars(self, user_id: str) -> list[dict]:
        return await self._clients.calendar(user_id).list_calendars()

    async def list_task_lists(self, user_id: str) -> list[dict]:
        return await self._clients.tasks(user_id).list_task_lists()

    # ------------------------------------------------------------------
    # Event commands
    # ------------------------------------------------------------------

    def _find(self, kind: ItemKind, item_id: str) -> AggregatedItem:
        item = self._collections[kind].get(item_id)
        if item is None:
            raise NotFoundError(f"{kind.value.capitalize()} {item_id} is not on the dashboard")
        return item

    async def create_event(self, user_id: str, draft: EventDraft) -> dict:
        placeholder = AggregatedItem(
            id=f"temp-{uuid.uuid4()}",
            kind=ItemKind.EVENT,
            source_account_id=user_id,
            source_calendar_id=draft.calendar_id,
            title=draft.summary,
            start=draft.start.isoformat(),
            end=draft.end.isoformat() if draft.end else None,
            all_day=draft.all_day,
        )
        return await self._runner.execute(
            self.events,
            apply=lambda c: c.add(placeholder),
            call=lambda: self._clients.calendar(user_id).create_event(draft),
            success_message="Event created",
            failure_message="Failed to create event",
            refresh=self.refresh_events,
            user_id=user_id,
        )

    async def update_event(self, event_id: str, draft: EventDraft) -> dict:
        item = self._find(ItemKind.EVENT, event_id)
        draft = draft.model_copy(update={"calendar_id": item.source_calendar_id})
        return await self._runner.execute(
            self.events,
            apply=lambda c: c.update(
                event_id,
                title=draft.summary,
                start=draft.start.isoformat(),
                end=draft.end.isoformat() if draft.end else None,
                all_day=draft.all_day,
            ),
            call=lambda: self._clients.calendar(item.source_account_id).update_event(event_id, draft),
            success_message="Event updated",
            failure_message="Failed to update event",
            refresh=self.refresh_events,
            user_id=item.source_account_id,
        )

    async def delete_event(self, event_id: str) -> None:
        item = self._find(ItemKind.EVENT, event_id)
        await self._runner.execute(
            self.events,
            apply=lambda c: c.remove(event_id),
            call=lambda: self._clients.calendar(item.source_account_id).delete_event(
                event_id, item.source_calendar_id
            ),
            success_message="Event deleted",
            failure_message="Failed to delete event",
            refresh=self.refresh_events,
            user_id=item.source_account_id,
        )

    # ------------------------------------------------------------------
    # Task commands
    # ------------------------------------------------------------------

    async def create_task(
        self, user_id: str, list_id: str, title: str, notes: str = "", due: str | None = None
    ) -> dict:
        placeholder = AggregatedItem(
            id=f"temp-{uuid.uuid4()}",
            kind=ItemKind.TASK,
            source_account_id=user_id,
            source_calendar_id=list_id,
            title=title,
            start=due,
            all_day=True,
        )
        return await self._runner.execute(
            self.tasks,
            apply=lambda c: c.add(placeholder),
            call=lambda: self._clients.tasks(user_id).create_task(list_id, title, notes, due),
            success_message="Task added",
            failure_message="Failed to add task",
            refresh=self.refresh_tasks,
            user_id=user_id,
        )

    async def toggle_task(self, task_id: str) -> dict:
        """Flip a Google task's completion; two calls flip it twice."""
        item = self._find(ItemKind.TASK, task_id)
        target = not item.completed
        return await self._runner.execute(
            self.tasks,
            apply=lambda c: c.update(task_id, completed=target),
            call=lambda: self._clients.tasks(item.source_account_id).set_completed(
                item.source_calendar_id, task_id, target
            ),
            success_message="Task completed" if target else "Task reopened",
            failure_message="Failed to update task",
            refresh=self.refresh_tasks,
            user_id=item.source_account_id,
        )

    async def delete_task(self, task_id: str) -> None:
        item = self._find(ItemKind.TASK, task_id)
        await self._runner.execute(
            self.tasks,
            apply=lambda c: c.remove(task_id),
            call=lambda: self._clients.tasks(item.source_account_id).delete_task(
                item.source_calendar_id, task_id
            ),
            success_message="Task deleted",
            failure_message="Failed to delete task",
            refresh=self.refresh_tasks,
            user_id=item.source_account_id,
        )

    # ------------------------------------------------------------------
    # Photo picker sessions
    # ------------------------------------------------------------------

    async def start_picker(self, user_id: str) -> dict:
        self._prune_pickers()
        client = self._clients.photos(user_id)
        session = await client.create_session()
        poller = PickerPoller(
            client,
            session["id"],
            poll_interval=self._picker_poll_interval,
            timeout=self._picker_timeout,
        )
        picker = PickerSession(
            user_id=user_id,
            session_id=session["id"],
            picker_uri=session.get("pickerUri", ""),
            poller=poller,
        )
        picker.task = asyncio.create_task(self._watch_picker(picker))
        self._pickers[picker.session_id] = picker
        return picker.to_dict()

    async def _watch_picker(self, picker: PickerSession) -> None:
        """Background task: wait for the pick, then store what was picked.

        Always ends in a terminal state, so the kiosk never polls a session
        that silently died.
        """
        try:
            await self._run_picker(picker)
        except (AuthExpired, AuthRequired) as exc:
            picker.poller.state = PickerState.FAILED
            picker.error = str(exc)
            await self._notifier.prompt_reconnect(picker.user_id, "Photo picking stopped: please reconnect")
        except HearthError as exc:
            picker.poller.state = PickerState.FAILED
            picker.error = str(exc)
            await self._notifier.notify(f"Photo picking failed: {exc}", level="error")
        except Exception:
            logger.exception("Picker session %s crashed", picker.session_id)
            picker.poller.state = PickerState.FAILED
            picker.error = "Unexpected error while picking photos"
            await self._notifier.notify("Photo picking failed", level="error")
        finally:
            picker.finished_at = self._monotonic()

    async def _run_picker(self, picker: PickerSession) -> None:
        client = self._clients.photos(picker.user_id)
        picker.result = await picker.poller.run()

        if picker.result.state == PickerState.PICKED:
            saved = await self._save_picked(picker.user_id, picker.result.items)
            picker.saved = self._store_photos(picker.user_id, saved)
            await self._notifier.notify(f"Added {picker.saved} photo(s)", level="success")

        try:
            await client.delete_session(picker.session_id)
        except HearthError as exc:
            logger.warning("Could not delete picker session %s: %s", picker.session_id, exc)

    async def _save_picked(self, user_id: str, items: list[dict]) -> list[dict]:
        """Download picked items to local storage. Items that fail are skipped."""
        token = await self._clients.access_token(user_id, Provider.PHOTOS)
        results = await asyncio.gather(
            *(self._download_item(item, token) for item in items), return_exceptions=True
        )
        saved = []
        for item, result in zip(items, results):
            if isinstance(result, HearthError):
                logger.warning("Could not download picked item %s: %s", item.get("id"), result)
            elif isinstance(result, BaseException):
                raise result
            else:
                saved.append(result)
        return saved

    async def _download_item(self, item: dict, token: str) -> dict:
        is_video = item["type"] == "video"
        stored = await self._photo_storage.download(
            item["url"],
            f"{item['id']}.{'mp4' if is_video else 'jpg'}",
            mime_type=item["mimeType"],
            access_token=token,
        )
        thumbnail = stored["url"]
        if is_video:
            try:
                thumb = await self._photo_storage.download(
                    item["thumbnail"], f"{item['id']}_thumb.jpg", mime_type="image/jpeg", access_token=token
                )
                thumbnail = thumb["url"]
            except HearthError as exc:
                logger.warning("No thumbnail for video %s: %s", item["id"], exc)
        return {
            "id": item["id"],
            "type": item["type"],
            "mimeType": item["mimeType"],
            "filename": stored["filename"],
            "url": stored["url"],
            "thumbnail": thumbnail,
            "createTime": item.get("createTime"),
        }

    def _store_photos(self, user_id: str, items: list[dict]) -> int:
        photos = self._sync.get_section("photos", {}) or {}
        existing = photos.get(str(user_id), [])
        merged = merge_media_items(existing, items)
        photos[str(user_id)] = merged
        self._sync.set_section("photos", photos)
        return len(merged) - len(existing)

    def _prune_pickers(self) -> None:
        now = self._monotonic()
        expired = [
            session_id
            for session_id, picker in self._pickers.items()
            if picker.finished_at is not None and now - picker.finished_at >= self._picker_retention
        ]
        for session_id in expired:
            del self._pickers[session_id]
        if expired:
            logger.debug("Forgot %d finished picker session(s)", len(expired))

    def _picker(self, session_id: str) -> PickerSession:
        self._prune_pickers()
        picker = self._pickers.get(session_id)
        if picker is None:
            raise NotFoundError(f"Picker session {session_id} not found")
        return picker

    def picker_status(self, session_id: str) -> dict:
        return self._picker(session_id).to_dict()

    async def cancel_picker(self, session_id: str) -> dict:
        picker = self._picker(session_id)
        picker.poller.cancel()
        if picker.task is not None:
            await picker.task
        return picker.to_dict()

    async def close(self) -> None:
        """Stop every picker still polling."""
        for picker in self._pickers.values():
            picker.poller.cancel()
        tasks = [p.task for p in self._pickers.values() if p.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
