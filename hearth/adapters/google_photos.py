"""Google Photos Picker adapter — Picker API v1 plus a bounded polling loop.

Flow: create a session, show its pickerUri (the user picks photos on their
phone), poll the session until Google reports `mediaItemsSet`, then list
the picked items. The poll stops on the first terminal state:
PICKED, CANCELLED (kiosk gave up) or EXPIRED (session or our own timeout).
FAILED is set by the session owner when polling or saving raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import quote

from hearth.data.models import utcnow
from hearth.integrations.google_api import GoogleApiClient

logger = logging.getLogger(__name__)

PICKER_API = "https://photospicker.googleapis.com/v1"
_CONTENT_HOST = "https://lh3.googleusercontent.com/"


class PickerState(str, Enum):
    ACTIVE = "active"
    PICKED = "picked"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass
class PickerResult:
    state: PickerState
    session_id: str
    items: list[dict] = field(default_factory=list)


def parse_duration(value: str | None) -> float | None:
    """Google's protobuf Duration JSON form, e.g. "5s" or "3.5s"."""
    if not value:
        return None
    match = re.fullmatch(r"(\d+(?:\.\d+)?)s", value.strip())
    return float(match.group(1)) if match else None


def parse_timestamp(value: str | None) -> datetime | None:
    """RFC 3339 timestamp with optional (nano)second fraction."""
    if not value:
        return None
    trimmed = re.sub(r"\.\d+", "", value).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(trimmed)
    except ValueError:
        logger.warning("Unparseable timestamp from Picker API: %s", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_media_item(item: dict) -> dict:
    media = item.get("mediaFile", {})
    base_url = media.get("baseUrl", "")
    if base_url and not base_url.startswith("http"):
        base_url = _CONTENT_HOST + base_url
    mime_type = media.get("mimeType", "image/jpeg")
    is_video = mime_type.startswith("video/")
    return {
        "id": item.get("id", ""),
        "type": "video" if is_video else "photo",
        "mimeType": mime_type,
        "baseUrl": base_url,
        "url": f"{base_url}=dv" if is_video else f"{base_url}=w1920-h1080",
        "thumbnail": f"{base_url}=w400-h400",
        "filename": media.get("filename", ""),
        "createTime": item.get("createTime"),
    }


def merge_media_items(existing: list[dict], picked: list[dict]) -> list[dict]:
    """Append newly picked items, skipping ids already in the list."""
    known = {item.get("id") for item in existing}
    merged = list(existing)
    for item in picked:
        if item.get("id") not in known:
            merged.append(item)
            known.add(item.get("id"))
    return merged


class GooglePhotosPickerClient:
    """Typed Picker v1 calls for one user."""

    def __init__(self, api: GoogleApiClient) -> None:
        self._api = api

    async def create_session(self) -> dict:
        session = await self._api.post(f"{PICKER_API}/sessions", json={}) or {}
        logger.info("Picker session %s created for user %s", session.get("id"), self._api.user_id)
        return session

    async def get_session(self, session_id: str) -> dict:
        return await self._api.get(f"{PICKER_API}/sessions/{quote(session_id, safe='')}") or {}

    async def list_media_items(self, session_id: str) -> list[dict]:
        items: list[dict] = []
        params: dict[str, Any] = {"sessionId": session_id, "pageSize": 100}
        while True:
            data = await self._api.get(f"{PICKER_API}/mediaItems", params=params) or {}
            items.extend(normalize_media_item(i) for i in data.get("mediaItems", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return items
            params = {**params, "pageToken": page_token}

    async def delete_session(self, session_id: str) -> None:
        await self._api.delete(f"{PICKER_API}/sessions/{quote(session_id, safe='')}")
        logger.debug("Picker session %s deleted", session_id)


class PickerPoller:
    """Polls one picker session until it reaches a terminal state.

    The wait between polls comes from the session's pollingConfig, falling
    back to `poll_interval`. The loop never outlives the session's
    expireTime or `timeout` seconds, whichever comes first. `cancel()`
    wakes a sleeping poller immediately.
    """

    def __init__(
        self,
        client: GooglePhotosPickerClient,
        session_id: str,
        poll_interval: float | None = None,
        timeout: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        from hearth.config import settings

        self._client = client
        self.session_id = session_id
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.PICKER_POLL_INTERVAL_SECONDS
        )
        self._timeout = timeout if timeout is not None else settings.PICKER_TIMEOUT_SECONDS
        self._monotonic = monotonic
        self._now = now
        self._cancelled = asyncio.Event()
        self.state = PickerState.ACTIVE

    def cancel(self) -> None:
        self._cancelled.set()

    async def run(self) -> PickerResult:
        deadline = self._monotonic() + self._timeout
        while True:
            if self._cancelled.is_set():
                return self._finish(PickerState.CANCELLED)

            session = await self._client.get_session(self.session_id)
            if session.get("mediaItemsSet"):
                items = await self._client.list_media_items(self.session_id)
                return self._finish(PickerState.PICKED, items)

            expire_time = parse_timestamp(session.get("expireTime"))
            if expire_time is not None and self._now() >= expire_time:
                return self._finish(PickerState.EXPIRED)
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                return self._finish(PickerState.EXPIRED)

            interval = (
                parse_duration(session.get("pollingConfig", {}).get("pollInterval"))
                or self._poll_interval
            )
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=min(interval, remaining))
            except asyncio.TimeoutError:
                continue

    def _finish(self, state: PickerState, items: list[dict] | None = None) -> PickerResult:
        self.state = state
        logger.info(
            "Picker session %s finished: %s (%d item(s))",
            self.session_id, state.value, len(items or []),
        )
        return PickerResult(state=state, session_id=self.session_id, items=items or [])
