"""Provider port — error taxonomy and the protocols core modules depend on.

Core modules never import httpx or google-auth; they depend on these
protocols and catch these exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from hearth.data.models import LinkedAccount, Provider, RefreshedToken


class HearthError(Exception):
    """Base for every error Hearth classifies itself."""

    status_code = 500


class AuthExpired(HearthError):
    """The provider rejected the token even after one forced refresh."""

    status_code = 401


class AuthRequired(HearthError):
    """No usable credential is left; the user has to reconnect."""

    status_code = 401


class TransientFailure(HearthError):
    """Network trouble, 5xx or rate limiting; worth retrying later."""

    status_code = 503


class ValidationError(HearthError):
    """Malformed input. Shown to the user, never retried."""

    status_code = 400


class NotFoundError(HearthError):
    status_code = 404


class ProviderError(HearthError):
    """A provider call failed in a way that is neither auth nor transient."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class ProviderClientError(ProviderError):
    """Non-retryable 4xx from a provider (bad request, forbidden, not found)."""


class Refresher(Protocol):
    """Exchanges a user's stored refresh token for a new access token.

    Raises AuthRequired on a definitive rejection and TransientFailure when
    the refresh could not be attempted.
    """

    async def refresh(self, user_id: str, provider: Provider) -> RefreshedToken: ...


class TokenSource(Protocol):
    async def get_fresh_token(
        self, user_id: str, provider: Provider, force: bool = False
    ) -> str: ...


class ItemFetcher(Protocol):
    """Fetches the normalized items of one (account, calendar/list) pair."""

    async def __call__(
        self, account: LinkedAccount, source_id: str, time_min: str, time_max: str
    ) -> list[dict]: ...
