"""In-memory notification adapter — implements NotificationPort.

Notifications queue up here until the kiosk polls GET /api/notifications,
which drains them. Bounded: the oldest entries drop off first.
"""

from __future__ import annotations

import logging
from collections import deque

from hearth.data.db import now_iso

logger = logging.getLogger(__name__)

_MAX_QUEUED = 100


class QueueNotifier:
    """Queue-backed implementation of NotificationPort."""

    def __init__(self, maxlen: int = _MAX_QUEUED) -> None:
        self._queue: deque[dict] = deque(maxlen=maxlen)

    async def notify(self, message: str, level: str = "info") -> None:
        self._queue.append({"type": "toast", "level": level, "message": message, "at": now_iso()})
        logger.debug("Queued %s notification: %s", level, message)

    async def prompt_reconnect(self, user_id: str, message: str) -> None:
        self._queue.append(
            {"type": "reconnect", "level": "warning", "userId": user_id,
             "message": message, "at": now_iso()}
        )
        logger.info("Reconnect prompt queued for user %s", user_id)

    def drain(self) -> list[dict]:
        items = list(self._queue)
        self._queue.clear()
        return items
