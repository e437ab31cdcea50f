"""
Hearth Kiosk — Google OAuth (server side).

The kiosk UI sends us the authorization code Google redirected back with;
we exchange it here, keep the refresh token, and from then on mint access
tokens on request. These helpers are blocking (google-auth uses requests);
async callers run them in a worker thread.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import requests
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from hearth.ports.provider_port import TransientFailure, ValidationError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/tasks",
    "https://www.googleapis.com/auth/photospicker.mediaitems.readonly",
    "https://www.googleapis.com/auth/userinfo.profile",
]

_TOKEN_URI = "https://oauth2.googleapis.com/token"
_DEFAULT_REDIRECT_URI = "http://localhost:5173"

# Google may grant a subset of (or differently ordered) scopes on re-consent.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def _load_client_config(secrets_path: str | None = None) -> dict:
    """Read client_secret.json ("web" or "installed" client)."""
    from hearth.config import settings

    path = Path(secrets_path or settings.GOOGLE_CLIENT_SECRETS_PATH)
    if not path.exists():
        raise FileNotFoundError(
            f"Google client secrets file not found at {path}. "
            "Download it from the Google Cloud Console."
        )
    config = json.loads(path.read_text())
    if "web" not in config and "installed" not in config:
        raise ValueError(f"{path} is not a Google OAuth client secrets file")
    return config


def _client_section(config: dict) -> dict:
    return config.get("web") or config["installed"]


def _redirect_uri(config: dict, override: str | None = None) -> str:
    """Pick the redirect URI the UI used.

    Explicit override, then GOOGLE_REDIRECT_URI, then the dev-server URI
    from the secrets file, then its first URI.
    """
    from hearth.config import settings

    if override:
        return override
    if settings.GOOGLE_REDIRECT_URI:
        return settings.GOOGLE_REDIRECT_URI
    uris = _client_section(config).get("redirect_uris") or []
    for uri in uris:
        if "5173" in uri:
            return uri
    return uris[0] if uris else _DEFAULT_REDIRECT_URI


def expiry_of(creds: Credentials) -> datetime | None:
    """google-auth keeps expiry as naive UTC; return it timezone-aware."""
    if creds.expiry is None:
        return None
    return creds.expiry.replace(tzinfo=timezone.utc)


def exchange_code(
    code: str,
    redirect_uri: str | None = None,
    secrets_path: str | None = None,
) -> Credentials:
    """Exchange an authorization code for credentials.

    Raises ValidationError when Google rejects the code and
    TransientFailure when Google could not be reached.
    """
    config = _load_client_config(secrets_path)
    flow = Flow.from_client_config(
        config, scopes=SCOPES, redirect_uri=_redirect_uri(config, redirect_uri)
    )
    try:
        flow.fetch_token(code=code)
    except OAuth2Error as exc:
        logger.warning("Authorization code rejected: %s", exc.error)
        raise ValidationError(f"Failed to exchange authorization code: {exc.error}") from exc
    except requests.RequestException as exc:
        raise TransientFailure(f"Google token endpoint unreachable: {exc}") from exc
    logger.info("Authorization code exchanged (refresh token issued: %s)",
                bool(flow.credentials.refresh_token))
    return flow.credentials


def refresh_access_token(
    refresh_token: str,
    scopes: list[str] | None = None,
    secrets_path: str | None = None,
) -> Credentials:
    """Mint a new access token from a stored refresh token.

    Propagates google.auth.exceptions.RefreshError (token revoked or
    expired) and TransportError (network) for the caller to classify.
    """
    client = _client_section(_load_client_config(secrets_path))
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=client.get("token_uri", _TOKEN_URI),
        client_id=client["client_id"],
        client_secret=client["client_secret"],
        scopes=scopes or SCOPES,
    )
    creds.refresh(Request())
    return creds
