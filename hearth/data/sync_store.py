"""
Hearth Kiosk — Cross-device sync blob.

The kiosk UI round-trips one opaque JSON document (users, selections, UI
state) through GET/POST /data; the last write wins and nothing is merged.
ProfileStore and SelectionStore read their slice of that same document so
the backend and every screen agree on who the users are and what they sync.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from hearth.data.db import SQLiteStore, now_iso
from hearth.data.models import Provider, UserProfile

logger = logging.getLogger(__name__)

_SELECTION_KEYS = {
    Provider.CALENDAR: "selectedCalendars",
    Provider.TASKS: "selectedTaskLists",
    Provider.PHOTOS: "selectedAlbums",
}


class SyncStore(SQLiteStore):
    """A single JSON document, last write wins."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_blob (
                    id         INTEGER PRIMARY KEY CHECK (id = 1),
                    payload    TEXT    NOT NULL,
                    updated_at TEXT    NOT NULL
                )
            """)
        logger.debug("Sync blob table initialized at %s", self._db_path)

    def get(self) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT payload FROM sync_blob WHERE id = 1").fetchone()
        if row is None:
            return {}
        return json.loads(row["payload"])

    def put(self, payload: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_blob (id, payload, updated_at) VALUES (1, ?, ?)",
                (json.dumps(payload), now_iso()),
            )
        logger.debug("Sync blob saved (%d top-level keys)", len(payload))

    def get_section(self, key: str, default: Any = None) -> Any:
        return self.get().get(key, default)

    def set_section(self, key: str, value: Any) -> None:
        payload = self.get()
        payload[key] = value
        self.put(payload)


class ProfileStore:
    """Household members, as listed in the sync blob's `users` section."""

    def __init__(self, sync: SyncStore) -> None:
        self._sync = sync

    def list_profiles(self) -> list[UserProfile]:
        profiles = []
        for raw in self._sync.get_section("users", []) or []:
            if not isinstance(raw, dict) or raw.get("id") is None:
                continue
            profiles.append(
                UserProfile(
                    id=str(raw["id"]),
                    name=raw.get("name", ""),
                    color=raw.get("color", "#2196f3"),
                    avatar=raw.get("avatar", ""),
                )
            )
        return profiles

    def get(self, user_id: str) -> UserProfile | None:
        for profile in self.list_profiles():
            if profile.id == str(user_id):
                return profile
        return None


class SelectionStore:
    """Which calendars / task lists each user chose to sync."""

    def __init__(self, sync: SyncStore) -> None:
        self._sync = sync

    def all(self, provider: Provider) -> dict[str, list[str]]:
        raw = self._sync.get_section(_SELECTION_KEYS[Provider(provider)], {}) or {}
        return {str(user_id): list(ids or []) for user_id, ids in raw.items()}

    def get(self, user_id: str, provider: Provider) -> list[str]:
        return self.all(provider).get(str(user_id), [])

    def set(self, user_id: str, provider: Provider, ids: list[str]) -> None:
        key = _SELECTION_KEYS[Provider(provider)]
        current = self._sync.get_section(key, {}) or {}
        # Keep order, drop duplicates
        current[str(user_id)] = list(dict.fromkeys(ids))
        self._sync.set_section(key, current)
        logger.info("Selection for user %s (%s): %s", user_id, Provider(provider).value, ids)
