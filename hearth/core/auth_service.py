"""
Hearth Kiosk — Account linking.

The backend half of "Connect Google account": exchange the code the UI
got from Google, keep the refresh token server-side, and hand the UI only
an access token plus its expiry (epoch ms, as Google's own clients do).
One consent covers calendar, tasks and photos, so one LinkedAccount per
provider is written from the same token.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import timedelta

from google.oauth2.credentials import Credentials

from hearth.data.models import (
    LinkedAccount,
    OAuthCredential,
    Provider,
    RefreshedToken,
    datetime_to_millis,
    utcnow,
)
from hearth.data.token_store import CredentialStore, TokenStore
from hearth.integrations.google_auth import SCOPES, exchange_code, expiry_of
from hearth.ports.provider_port import Refresher, ValidationError

logger = logging.getLogger(__name__)


def _token_payload(access_token: str, expires_at) -> dict:
    return {"access_token": access_token, "expiry_date": datetime_to_millis(expires_at)}


class AuthService:
    """OAuth callback, refresh and disconnect for household members."""

    def __init__(
        self,
        credentials: CredentialStore,
        tokens: TokenStore,
        refresher: Refresher,
        exchange: Callable[..., Credentials] = exchange_code,
    ) -> None:
        self._credentials = credentials
        self._tokens = tokens
        self._refresher = refresher
        self._exchange = exchange

    async def handle_callback(
        self, code: str, user_id: str, redirect_uri: str | None = None
    ) -> dict:
        """Exchange an authorization code and link every provider for the user."""
        if not code or not user_id:
            raise ValidationError("Missing code or userId")

        creds = await asyncio.to_thread(self._exchange, code, redirect_uri)
        expires_at = expiry_of(creds) or utcnow() + timedelta(hours=1)
        stored = self._credentials.save(
            OAuthCredential(
                user_id=user_id,
                refresh_token=creds.refresh_token,
                access_token=creds.token,
                expiry=expires_at,
                scopes=list(creds.scopes or SCOPES),
            )
        )
        if not stored.refresh_token:
            logger.warning("No refresh token for user %s; the link will expire within the hour", user_id)

        self._link_all(user_id, creds.token, expires_at, refreshable=bool(stored.refresh_token))
        logger.info("Google account linked for user %s", user_id)
        return _token_payload(creds.token, expires_at)

    async def refresh(self, user_id: str) -> dict:
        """Mint a fresh access token for the user.

        Raises AuthRequired / TransientFailure from the refresher unchanged.
        """
        refreshed: RefreshedToken = await self._refresher.refresh(user_id, Provider.CALENDAR)
        for account in self._tokens.list_accounts():
            if account.user_id == user_id:
                account.access_token = refreshed.access_token
                account.expires_at = refreshed.expires_at
                account.refreshable = True
                self._tokens.save(account)
        logger.info("Token refreshed for user %s", user_id)
        return _token_payload(refreshed.access_token, refreshed.expires_at)

    def disconnect(self, user_id: str) -> bool:
        """Forget the user's credential and every linked provider."""
        had_credential = self._credentials.delete(user_id)
        removed = self._tokens.delete_user(user_id)
        logger.info("User %s disconnected (%d linked account(s) removed)", user_id, removed)
        return had_credential or removed > 0

    def _link_all(self, user_id: str, access_token: str, expires_at, refreshable: bool) -> None:
        for provider in Provider:
            self._tokens.save(
                LinkedAccount(
                    user_id=user_id,
                    provider=provider,
                    access_token=access_token,
                    expires_at=expires_at,
                    refreshable=refreshable,
                )
            )
