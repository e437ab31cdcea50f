"""Provider client factory — builds per-user Google clients and aggregator fetchers."""

from __future__ import annotations

import httpx

from hearth.adapters.google_calendar import GoogleCalendarClient
from hearth.adapters.google_photos import GooglePhotosPickerClient
from hearth.adapters.google_tasks import GoogleTasksClient
from hearth.data.models import LinkedAccount, Provider
from hearth.integrations.google_api import GoogleApiClient
from hearth.ports.provider_port import ItemFetcher, TokenSource


class ClientFactory:
    """Creates typed clients that all resolve tokens through one TokenSource.

    Args:
        transport: Optional httpx transport shared by every client (tests
            pass an httpx.MockTransport).
    """

    def __init__(
        self,
        tokens: TokenSource,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self._tokens = tokens
        self._transport = transport
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    def api(self, user_id: str, provider: Provider) -> GoogleApiClient:
        return GoogleApiClient(
            self._tokens,
            user_id,
            provider,
            transport=self._transport,
            max_attempts=self._max_attempts,
            retry_delay=self._retry_delay,
        )

    async def access_token(self, user_id: str, provider: Provider) -> str:
        """A fresh bearer token, for downloads outside the REST clients."""
        return await self._tokens.get_fresh_token(user_id, provider)

    def calendar(self, user_id: str) -> GoogleCalendarClient:
        return GoogleCalendarClient(self.api(user_id, Provider.CALENDAR))

    def tasks(self, user_id: str) -> GoogleTasksClient:
        return GoogleTasksClient(self.api(user_id, Provider.TASKS))

    def photos(self, user_id: str) -> GooglePhotosPickerClient:
        return GooglePhotosPickerClient(self.api(user_id, Provider.PHOTOS))

    def calendar_fetcher(self) -> ItemFetcher:
        async def fetch(account: LinkedAccount, calendar_id: str, time_min: str, time_max: str) -> list[dict]:
            return await self.calendar(account.user_id).list_events(calendar_id, time_min, time_max)

        return fetch

    def task_fetcher(self) -> ItemFetcher:
        # Undated tasks must still show up, so the range is not applied.
        async def fetch(account: LinkedAccount, list_id: str, time_min: str, time_max: str) -> list[dict]:
            return await self.tasks(account.user_id).list_tasks(list_id)

        return fetch
