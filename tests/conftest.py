"""Shared test fixtures and configuration.

Sets up environment variables before any hearth import so hearth.config
never reads a developer's .env values, and provides temp-file stores plus
small fakes for the token source and Google HTTP traffic.
"""

import os

# Patch env vars BEFORE any hearth imports
os.environ.setdefault("DATABASE_PATH", os.path.join(os.path.dirname(__file__), ".pytest-hearth.db"))
os.environ.setdefault("GOOGLE_CLIENT_SECRETS_PATH", "missing-client-secret.json")
os.environ.setdefault("AUTH_BACKEND_URL", "")
os.environ.setdefault("PROVIDER_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("PICKER_POLL_INTERVAL_SECONDS", "0.01")
os.environ.setdefault("PHOTO_STORAGE_DIR", os.path.join(os.path.dirname(__file__), ".pytest-hearth-storage"))
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime, timedelta, timezone

import httpx
import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_hearth.db")


@pytest.fixture
def task_db(tmp_db_path):
    from hearth.data.db import LocalTaskDB
    return LocalTaskDB(db_path=tmp_db_path)


@pytest.fixture
def stats_db(tmp_db_path):
    from hearth.data.db import StatsDB
    return StatsDB(db_path=tmp_db_path)


@pytest.fixture
def reward_db(tmp_db_path):
    from hearth.data.db import RewardDB
    return RewardDB(db_path=tmp_db_path)


@pytest.fixture
def token_store(tmp_db_path):
    from hearth.data.token_store import TokenStore
    return TokenStore(db_path=tmp_db_path)


@pytest.fixture
def credential_store(tmp_db_path):
    from hearth.data.token_store import CredentialStore
    return CredentialStore(db_path=tmp_db_path)


@pytest.fixture
def sync_store(tmp_db_path):
    from hearth.data.sync_store import SyncStore
    return SyncStore(db_path=tmp_db_path)


class FakeTokens:
    """TokenSource stand-in: hands out "token-N", counting forced refreshes."""

    def __init__(self):
        self.calls = []
        self.refreshes = 0

    async def get_fresh_token(self, user_id, provider, force=False):
        self.calls.append((user_id, provider, force))
        if force:
            self.refreshes += 1
        return f"token-{self.refreshes}"


@pytest.fixture
def fake_tokens():
    return FakeTokens()


class GoogleStub:
    """httpx.MockTransport whose responses are queued per test.

    `responses` holds httpx.Response objects (or exceptions to raise),
    consumed in order; every request is recorded in `requests`.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.requests = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request):
        self.requests.append(request)
        if self._handler is not None:
            return self._handler(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def google_stub():
    return GoogleStub


def linked_account(user_id="1", provider="calendar", minutes=30, refreshable=True, token="stored-token"):
    """A LinkedAccount expiring `minutes` from now (negative = already expired)."""
    from hearth.data.models import LinkedAccount, Provider
    return LinkedAccount(
        user_id=user_id,
        provider=Provider(provider),
        access_token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        refreshable=refreshable,
    )


@pytest.fixture
def make_account():
    return linked_account
