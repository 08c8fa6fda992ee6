"""Shared fixtures: temp-dir stores and a call-counting provider stub."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from gdcli.auth.google_oauth import GoogleOAuthProvider
from gdcli.auth.models import Account, TokenGrant, utc_now
from gdcli.auth.store import AccountStore, CredentialRegistry


class FakeProvider(GoogleOAuthProvider):
    """Real URL building; token endpoint calls are recorded instead of sent."""

    def __init__(self):
        super().__init__(
            session=MagicMock(),
            auth_url="https://accounts.example.test/auth",
            token_url="https://oauth2.example.test/token",
            revoke_url="https://oauth2.example.test/revoke",
            scopes=["https://www.googleapis.com/auth/drive"],
        )
        self.exchange_calls = []
        self.refresh_calls = []
        self.revoke_calls = []
        self.exchange_error = None
        self.refresh_error = None
        self.revoke_error = None
        self.exchange_result = TokenGrant(
            access_token="access-initial",
            refresh_token="refresh-initial",
            expires_at=utc_now() + timedelta(hours=1),
        )
        self.refresh_result = TokenGrant(
            access_token="access-refreshed",
            refresh_token=None,
            expires_at=utc_now() + timedelta(hours=1),
        )

    def exchange_code(self, client, code, redirect_uri, code_verifier):
        self.exchange_calls.append((client, code, redirect_uri, code_verifier))
        if self.exchange_error:
            raise self.exchange_error
        return self.exchange_result

    def refresh(self, client, refresh_token):
        self.refresh_calls.append((client, refresh_token))
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_result

    def revoke(self, token):
        self.revoke_calls.append(token)
        if self.revoke_error:
            raise self.revoke_error


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def registry(tmp_path):
    return CredentialRegistry(tmp_path / "credentials.json")


@pytest.fixture
def configured_registry(registry):
    registry.set("abc", "xyz")
    return registry


@pytest.fixture
def store(tmp_path):
    return AccountStore(tmp_path / "accounts.json")


@pytest.fixture
def make_account():
    def _make(identity="alice@example.com", refresh_token="refresh-1", access_token=None, expires_in=None):
        expiry = utc_now() + timedelta(seconds=expires_in) if expires_in is not None else None
        return Account(
            identity=identity,
            refresh_token=refresh_token,
            access_token=access_token,
            access_token_expiry=expiry,
        )

    return _make
