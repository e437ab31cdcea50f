"""Notification port — abstract interface for telling the kiosk UI what happened.

Core modules depend on this protocol, never on a specific delivery channel.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def notify(self, message: str, level: str = "info") -> None: ...

    async def prompt_reconnect(self, user_id: str, message: str) -> None: ...
