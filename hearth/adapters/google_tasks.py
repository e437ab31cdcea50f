"""Google Tasks adapter — Tasks API v1 over GoogleApiClient."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from hearth.integrations.google_api import GoogleApiClient

logger = logging.getLogger(__name__)

TASKS_API = "https://tasks.googleapis.com/tasks/v1"


def normalize_task(task: dict, list_id: str = "@default") -> dict:
    """Map a Google task to the shape the kiosk and aggregator use."""
    due = task.get("due")
    return {
        "id": task.get("id", ""),
        "title": task.get("title") or "(No title)",
        "notes": task.get("notes", ""),
        "due": due,
        "start": due,
        "end": None,
        "allDay": True,
        "completed": task.get("status") == "completed",
        "completedAt": task.get("completed"),
        "parent": task.get("parent"),
        "position": task.get("position"),
        "updated": task.get("updated"),
        "listId": list_id,
    }


def _task_url(list_id: str, task_id: str | None = None) -> str:
    url = f"{TASKS_API}/lists/{quote(list_id, safe='')}/tasks"
    if task_id:
        url += f"/{quote(task_id, safe='')}"
    return url


class GoogleTasksClient:
    """Typed Tasks v1 calls for one user."""

    def __init__(self, api: GoogleApiClient) -> None:
        self._api = api

    async def list_task_lists(self) -> list[dict]:
        lists: list[dict] = []
        params: dict[str, Any] = {"maxResults": 100}
        while True:
            data = await self._api.get(f"{TASKS_API}/users/@me/lists", params=params) or {}
            lists.extend({"id": tl["id"], "title": tl.get("title", "")} for tl in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return lists
            params = {**params, "pageToken": page_token}

    async def list_tasks(
        self,
        list_id: str,
        show_completed: bool = True,
        show_hidden: bool = True,
        due_min: str | None = None,
        due_max: str | None = None,
    ) -> list[dict]:
        """Every task in one list, completed ones included by default.

        Completed tasks are needed so a task ticked on the phone shows as
        ticked on the kiosk instead of vanishing.
        """
        params: dict[str, Any] = {
            "showCompleted": str(show_completed).lower(),
            "showHidden": str(show_hidden).lower(),
            "maxResults": 100,
        }
        if due_min:
            params["dueMin"] = due_min
        if due_max:
            params["dueMax"] = due_max

        tasks: list[dict] = []
        while True:
            data = await self._api.get(_task_url(list_id), params=params) or {}
            tasks.extend(
                normalize_task(t, list_id) for t in data.get("items", []) if not t.get("deleted")
            )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        logger.debug("Fetched %d task(s) from list %s", len(tasks), list_id)
        return tasks

    async def create_task(
        self, list_id: str, title: str, notes: str = "", due: str | None = None
    ) -> dict:
        body: dict[str, Any] = {"title": title, "notes": notes}
        if due:
            body["due"] = due
        created = await self._api.post(_task_url(list_id), json=body)
        logger.info("Task created in list %s: '%s'", list_id, title)
        return normalize_task(created or {}, list_id)

    async def update_task(self, list_id: str, task_id: str, changes: dict) -> dict:
        """PATCH a task. Reopening clears Google's completion timestamp."""
        body = dict(changes)
        if body.get("status") == "needsAction":
            body["completed"] = None
        updated = await self._api.patch(_task_url(list_id, task_id), json=body)
        logger.info("Task %s updated", task_id)
        return normalize_task(updated or {}, list_id)

    async def set_completed(self, list_id: str, task_id: str, completed: bool) -> dict:
        return await self.update_task(
            list_id, task_id, {"status": "completed" if completed else "needsAction"}
        )

    async def delete_task(self, list_id: str, task_id: str) -> None:
        await self._api.delete(_task_url(list_id, task_id))
        logger.info("Task %s deleted from list %s", task_id, list_id)
