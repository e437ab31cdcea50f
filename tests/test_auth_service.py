"""Tests for hearth.core.auth_service — code exchange, refresh, disconnect.

The Google code exchange is replaced by a plain function; nothing here
touches the network.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from hearth.core.auth_service import AuthService
from hearth.data.models import Provider, RefreshedToken
from hearth.ports.provider_port import AuthRequired, ValidationError

EXPIRY = datetime(2030, 1, 1, 12, 0)  # google-auth keeps naive UTC


def _creds(token="access-1", refresh_token="refresh-1"):
    creds = MagicMock()
    creds.token = token
    creds.refresh_token = refresh_token
    creds.expiry = EXPIRY
    creds.scopes = ["https://www.googleapis.com/auth/calendar"]
    return creds


@pytest.fixture
def refresher():
    return AsyncMock()


def _service(credential_store, token_store, refresher, creds=None):
    calls = []

    def exchange(code, redirect_uri=None):
        calls.append((code, redirect_uri))
        return creds or _creds()

    service = AuthService(credential_store, token_store, refresher, exchange=exchange)
    return service, calls


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_links_every_provider(self, credential_store, token_store, refresher):
        service, calls = _service(credential_store, token_store, refresher)

        payload = await service.handle_callback("code-1", "1", redirect_uri="http://localhost:5173")

        assert calls == [("code-1", "http://localhost:5173")]
        assert payload == {"access_token": "access-1", "expiry_date": 1893499200000}
        linked = token_store.list_accounts()
        assert {a.provider for a in linked} == set(Provider)
        assert all(a.refreshable for a in linked)
        assert credential_store.get("1").refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_token_never_returned(self, credential_store, token_store, refresher):
        service, _ = _service(credential_store, token_store, refresher)
        payload = await service.handle_callback("code-1", "1")
        assert "refresh-1" not in str(payload)

    @pytest.mark.asyncio
    async def test_reconsent_without_refresh_token_stays_refreshable(
        self, credential_store, token_store, refresher
    ):
        first, _ = _service(credential_store, token_store, refresher)
        await first.handle_callback("code-1", "1")
        second, _ = _service(credential_store, token_store, refresher, creds=_creds("access-2", None))

        await second.handle_callback("code-2", "1")

        account = token_store.get("1", Provider.TASKS)
        assert account.access_token == "access-2"
        assert account.refreshable is True

    @pytest.mark.asyncio
    async def test_no_refresh_token_at_all(self, credential_store, token_store, refresher):
        service, _ = _service(credential_store, token_store, refresher, creds=_creds(refresh_token=None))
        await service.handle_callback("code-1", "1")
        assert token_store.get("1", Provider.CALENDAR).refreshable is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,user_id", [("", "1"), ("code", "")])
    async def test_missing_input(self, credential_store, token_store, refresher, code, user_id):
        service, calls = _service(credential_store, token_store, refresher)
        with pytest.raises(ValidationError):
            await service.handle_callback(code, user_id)
        assert calls == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_updates_all_linked_providers(self, credential_store, token_store, refresher, make_account):
        token_store.save(make_account(provider="calendar", minutes=-5))
        token_store.save(make_account(provider="photos", minutes=-5))
        token_store.save(make_account(user_id="2", provider="calendar", token="other"))
        expires = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        refresher.refresh.return_value = RefreshedToken("renewed", expires)
        service, _ = _service(credential_store, token_store, refresher)

        payload = await service.refresh("1")

        assert payload["access_token"] == "renewed"
        assert token_store.get("1", Provider.PHOTOS).access_token == "renewed"
        assert token_store.get("2", Provider.CALENDAR).access_token == "other"

    @pytest.mark.asyncio
    async def test_rejection_propagates(self, credential_store, token_store, refresher):
        refresher.refresh.side_effect = AuthRequired("No refresh token found. Please reconnect account.")
        service, _ = _service(credential_store, token_store, refresher)
        with pytest.raises(AuthRequired):
            await service.refresh("1")


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_forgets_everything(self, credential_store, token_store, refresher):
        service, _ = _service(credential_store, token_store, refresher)
        await service.handle_callback("code-1", "1")

        assert service.disconnect("1") is True
        assert credential_store.get("1") is None
        assert token_store.list_accounts() == []
        assert service.disconnect("1") is False
