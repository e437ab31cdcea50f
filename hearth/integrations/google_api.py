"""
Hearth Kiosk — Authenticated Google REST client.

One GoogleApiClient per (user, provider). Every attempt asks the token
client for a bearer token, so a refresh that happened between attempts is
picked up. Responses are classified here and nowhere else:

- 2xx           → parsed JSON, or None for 204 / an empty body
- 401           → force-refresh the token and retry once, then AuthExpired
- 429, 5xx      → bounded retry with exponential backoff, then TransientFailure
- network error → same as 5xx
- other 4xx     → ProviderClientError, never retried
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from hearth.data.models import Provider
from hearth.ports.provider_port import (
    AuthExpired,
    ProviderClientError,
    ProviderError,
    TokenSource,
    TransientFailure,
)

logger = logging.getLogger(__name__)


def _is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


def _error_details(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _error_message(resp: httpx.Response) -> str:
    details = _error_details(resp)
    if isinstance(details, dict):
        error = details.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
    return f"HTTP {resp.status_code}"


class GoogleApiClient:
    """Bearer-authenticated JSON calls with retry and error classification."""

    def __init__(
        self,
        tokens: TokenSource,
        user_id: str,
        provider: Provider,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
    ) -> None:
        from hearth.config import settings

        self._tokens = tokens
        self.user_id = user_id
        self.provider = Provider(provider)
        self._transport = transport
        self._max_attempts = max_attempts if max_attempts is not None else settings.PROVIDER_MAX_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else settings.PROVIDER_RETRY_DELAY_SECONDS
        self._timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform one logical call; may issue several HTTP requests."""
        attempt = 0
        auth_retried = False
        force_refresh = False

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while True:
                token = await self._tokens.get_fresh_token(
                    self.user_id, self.provider, force=force_refresh
                )
                force_refresh = False
                try:
                    resp = await client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers={"Authorization": f"Bearer {token}"},
                    )
                except httpx.HTTPError as exc:
                    attempt += 1
                    if attempt >= self._max_attempts:
                        raise TransientFailure(
                            f"{method} {url} failed after {attempt} attempts: {exc}"
                        ) from exc
                    logger.warning("%s %s network error (attempt %d): %s", method, url, attempt, exc)
                    await self._backoff(attempt)
                    continue

                if resp.status_code == 401:
                    if auth_retried:
                        raise AuthExpired(
                            f"Google rejected the token for user {self.user_id} ({self.provider.value})"
                        )
                    logger.info("401 from %s, retrying with a refreshed token", url)
                    auth_retried = True
                    force_refresh = True
                    continue

                if _is_retryable(resp.status_code):
                    attempt += 1
                    if attempt >= self._max_attempts:
                        raise TransientFailure(
                            f"{method} {url} answered {resp.status_code} after {attempt} attempts"
                        )
                    logger.warning(
                        "%s %s answered %d (attempt %d), retrying",
                        method, url, resp.status_code, attempt,
                    )
                    await self._backoff(attempt)
                    continue

                if resp.status_code >= 400:
                    raise ProviderClientError(
                        _error_message(resp), status=resp.status_code, details=_error_details(resp)
                    )

                return self._parse(resp)

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self._retry_delay * 2 ** (attempt - 1))

    @staticmethod
    def _parse(resp: httpx.Response) -> Any:
        if resp.status_code == 204 or not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(
                f"Invalid JSON from {resp.request.url}", status=resp.status_code, details=resp.text
            ) from exc

    async def get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request("POST", url, params=params, json=json)

    async def put(self, url: str, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request("PUT", url, params=params, json=json)

    async def patch(self, url: str, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request("PATCH", url, params=params, json=json)

    async def delete(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("DELETE", url, params=params)
