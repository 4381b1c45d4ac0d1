import time

import pytest
import requests

from conftest import ACCOUNT_ID
from mirrorsync.domain.models import AccountStatus
from mirrorsync.errors import ReauthRequiredError, TransientTransportError
from mirrorsync.infra.token_provider import MsalTokenProvider


class FakeApp:
    def __init__(self, results=None):
        self.results = list(results or [])
        self.refresh_tokens = []

    def acquire_token_by_refresh_token(self, refresh_token, scopes=None):
        self.refresh_tokens.append(refresh_token)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def app():
    return FakeApp()


@pytest.fixture
def provider(database, state_store, app):
    return MsalTokenProvider(database, state_store, client_id="client", app=app, max_refresh_failures=3)


def _expire_soon(database, seconds=60):
    database.conn.execute("UPDATE account_tokens SET expires_at = ?", (int(time.time()) + seconds,))
    database.conn.commit()


def test_fresh_token_is_returned_without_refresh(provider, app):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)

    assert provider.get_access_token(ACCOUNT_ID) == "access-1"
    assert app.refresh_tokens == []


def test_token_inside_refresh_margin_is_refreshed(provider, app):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)
    _expire_soon(provider.db)
    app.results.append({"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600})

    assert provider.get_access_token(ACCOUNT_ID) == "access-2"
    assert app.refresh_tokens == ["refresh-1"]
    assert provider._load(ACCOUNT_ID)["refresh_token"] == "refresh-2"


def test_missing_tokens_require_reauth(provider, state_store):
    with pytest.raises(ReauthRequiredError):
        provider.get_access_token(ACCOUNT_ID)

    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.NEEDS_REAUTH


def test_failed_refresh_falls_back_to_unexpired_token(provider, app, state_store):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)
    _expire_soon(provider.db)
    app.results.append({"error": "temporarily_unavailable"})

    assert provider.get_access_token(ACCOUNT_ID) == "access-1"
    assert provider._load(ACCOUNT_ID)["refresh_failure_count"] == 1
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE


def test_failed_refresh_of_expired_token_is_transient(provider, app, state_store):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)
    _expire_soon(provider.db, seconds=-5)
    app.results.append({"error": "temporarily_unavailable", "error_description": "AADSTS50196"})

    with pytest.raises(TransientTransportError):
        provider.get_access_token(ACCOUNT_ID)

    assert provider._load(ACCOUNT_ID)["refresh_failure_count"] == 1
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE


def test_network_failure_during_refresh_is_transient(provider, app, state_store):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)
    _expire_soon(provider.db, seconds=-5)
    app.results.append(requests.exceptions.ConnectionError("login.microsoftonline.com unreachable"))

    with pytest.raises(TransientTransportError, match="unreachable"):
        provider.get_access_token(ACCOUNT_ID)

    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE


def test_repeated_refresh_failures_mark_account_needs_reauth(provider, app, state_store):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)
    _expire_soon(provider.db, seconds=-5)
    app.results.extend({"error": "invalid_grant"} for _ in range(3))

    for _ in range(2):
        with pytest.raises(TransientTransportError):
            provider.get_access_token(ACCOUNT_ID)
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.ACTIVE
    with pytest.raises(ReauthRequiredError):
        provider.get_access_token(ACCOUNT_ID)
    with pytest.raises(ReauthRequiredError):
        provider.get_access_token(ACCOUNT_ID)

    assert len(app.refresh_tokens) == 3
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.NEEDS_REAUTH


def test_revoke_disconnects_account(provider, state_store):
    provider.store_tokens(ACCOUNT_ID, "access-1", refresh_token="refresh-1", expires_in=3600)

    provider.revoke_tokens(ACCOUNT_ID)

    assert provider._load(ACCOUNT_ID) is None
    assert state_store.get_account(ACCOUNT_ID).status == AccountStatus.DISCONNECTED
