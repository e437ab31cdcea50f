"""
Hearth Kiosk — Token Refresh Client.

Every provider call starts here: give me a token for (user, provider) that
Google will accept right now. A token that is still good is handed back
without touching the network; an expired one is refreshed exactly once no
matter how many callers are waiting on it.

Two refreshers implement the actual exchange:
- LocalRefresher: the credential store lives in this process (default).
- HttpRefresher: a separate auth backend owns the refresh tokens and is
  reached through GET /auth/refresh/{userId}.

Failure asymmetry: a definitive rejection deletes the stored account and
raises AuthRequired (the user must reconnect); a transient failure raises
TransientFailure and leaves the account alone.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import quote

import httpx
from google.auth.exceptions import RefreshError, TransportError

from hearth.data.models import (
    LinkedAccount,
    Provider,
    RefreshedToken,
    millis_to_datetime,
    utcnow,
)
from hearth.data.token_store import CredentialStore, TokenStore
from hearth.integrations.google_auth import expiry_of, refresh_access_token
from hearth.ports.provider_port import AuthRequired, Refresher, TransientFailure

logger = logging.getLogger(__name__)

# Google access tokens live one hour; used when a response carries no expiry.
_DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

# Statuses from the auth backend that mean "this refresh token is dead".
_DEFINITIVE_STATUSES = {400, 401, 403}


class TokenRefreshClient:
    """Resolves fresh access tokens with single-flight refresh per key."""

    def __init__(
        self,
        store: TokenStore,
        refresher: Refresher,
        safety_margin_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if safety_margin_seconds is None:
            from hearth.config import settings

            safety_margin_seconds = settings.TOKEN_SAFETY_MARGIN_SECONDS
        self._store = store
        self._refresher = refresher
        self._margin = safety_margin_seconds
        self._clock = clock
        self._inflight: dict[tuple[str, Provider], asyncio.Task[str]] = {}

    async def get_fresh_token(
        self, user_id: str, provider: Provider, force: bool = False
    ) -> str:
        """Return a usable access token.

        Args:
            force: Refresh even if the stored token looks fresh. Used after
                the provider answered 401 with the current token.

        Raises:
            AuthRequired: nothing stored, nothing refreshable, or the refresh
                was definitively rejected.
            TransientFailure: the refresh could not be completed right now.
        """
        provider = Provider(provider)
        account = self._store.get(user_id, provider)
        if account is None:
            raise AuthRequired(f"No {provider.value} account linked for user {user_id}")

        if not force and account.is_fresh(self._clock(), self._margin):
            return account.access_token

        if not account.refreshable:
            raise AuthRequired(
                f"Token for user {user_id} ({provider.value}) expired and cannot be refreshed"
            )

        key = (user_id, provider)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(user_id, provider))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight refresh for user %s (%s)", user_id, provider.value)
        # One caller giving up must not cancel the refresh for the others.
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str, Provider], task: asyncio.Task[str]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            task.exception()  # mark retrieved; waiters re-raise it themselves

    async def _refresh(self, user_id: str, provider: Provider) -> str:
        try:
            refreshed = await self._refresher.refresh(user_id, provider)
        except AuthRequired:
            self._store.delete(user_id, provider)
            logger.warning(
                "Refresh rejected for user %s (%s), account unlinked", user_id, provider.value
            )
            raise
        except TransientFailure as exc:
            logger.warning(
                "Refresh for user %s (%s) failed transiently: %s", user_id, provider.value, exc
            )
            raise

        self._store.save(
            LinkedAccount(
                user_id=user_id,
                provider=provider,
                access_token=refreshed.access_token,
                expires_at=refreshed.expires_at,
                refreshable=True,
            )
        )
        logger.info("Token refreshed for user %s (%s)", user_id, provider.value)
        return refreshed.access_token


# ---------------------------------------------------------------------------
# Refreshers
# ---------------------------------------------------------------------------


class LocalRefresher:
    """Refreshes with google-auth against the in-process credential store."""

    def __init__(self, credentials: CredentialStore, secrets_path: str | None = None) -> None:
        self._credentials = credentials
        self._secrets_path = secrets_path

    async def refresh(self, user_id: str, provider: Provider) -> RefreshedToken:
        credential = self._credentials.get(user_id)
        if credential is None or not credential.refresh_token:
            raise AuthRequired("No refresh token found. Please reconnect account.")

        try:
            creds = await asyncio.to_thread(
                refresh_access_token,
                credential.refresh_token,
                credential.scopes or None,
                self._secrets_path,
            )
        except RefreshError as exc:
            # google-auth flags 5xx / rate-limited token responses as retryable
            if getattr(exc, "retryable", False):
                raise TransientFailure(f"Token endpoint unavailable: {exc}") from exc
            raise AuthRequired(f"Refresh token rejected: {exc}") from exc
        except TransportError as exc:
            raise TransientFailure(f"Token endpoint unreachable: {exc}") from exc

        expires_at = expiry_of(creds) or utcnow() + _DEFAULT_TOKEN_LIFETIME
        credential.access_token = creds.token
        credential.expiry = expires_at
        self._credentials.save(credential)
        return RefreshedToken(access_token=creds.token, expires_at=expires_at)


class HttpRefresher:
    """Refreshes through an auth backend's GET /auth/refresh/{userId}."""

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def refresh(self, user_id: str, provider: Provider) -> RefreshedToken:
        url = f"{self._base_url}/auth/refresh/{quote(str(user_id), safe='')}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise TransientFailure(f"Auth backend unreachable: {exc}") from exc

        if resp.status_code in _DEFINITIVE_STATUSES:
            raise AuthRequired(f"Auth backend rejected refresh ({resp.status_code})")
        if resp.status_code != 200:
            raise TransientFailure(f"Auth backend answered {resp.status_code}")

        try:
            data = resp.json()
            access_token = data["access_token"]
            expiry_ms = data.get("expiry_date")
            expires_at = (
                millis_to_datetime(expiry_ms) if expiry_ms else utcnow() + _DEFAULT_TOKEN_LIFETIME
            )
        except (ValueError, KeyError, TypeError, OverflowError, OSError) as exc:
            raise TransientFailure("Auth backend sent a malformed refresh response") from exc

        return RefreshedToken(access_token=access_token, expires_at=expires_at)


def create_refresher(app_settings, credentials: CredentialStore) -> Refresher:
    """HTTP refresher when AUTH_BACKEND_URL is configured, in-process otherwise."""
    if app_settings.AUTH_BACKEND_URL:
        logger.info("Token refresh via auth backend at %s", app_settings.AUTH_BACKEND_URL)
        return HttpRefresher(
            app_settings.AUTH_BACKEND_URL, timeout=app_settings.HTTP_TIMEOUT_SECONDS
        )
    return LocalRefresher(credentials, secrets_path=app_settings.GOOGLE_CLIENT_SECRETS_PATH)
