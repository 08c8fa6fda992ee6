"""End-to-end tests for AccountManager with a stub provider and temp-dir stores."""

import json

import pytest

from gdcli.auth.errors import AccountNotFound, DuplicateAccount, NotConfigured, StateMismatch
from gdcli.auth.flow import AuthorizationFlow
from gdcli.auth.google_oauth import OAuthProviderError
from gdcli.auth.manager import AccountManager
from gdcli.auth.models import ClientCredentials


class ManualFlowFactory:
    """Builds manual-mode flows whose user pastes a redirect echoing `state`."""

    def __init__(self, provider, pasted_state=None, code="CODE123"):
        self.provider = provider
        self.pasted_state = pasted_state
        self.code = code
        self.calls = 0

    def __call__(self, client):
        self.calls += 1
        state = "GENERATED-STATE"
        pasted_state = self.pasted_state or state
        return AuthorizationFlow(
            client,
            self.provider,
            output=lambda message: None,
            state_factory=lambda: state,
            prompt=lambda message: f"http://localhost/?code={self.code}&state={pasted_state}",
        )


@pytest.fixture
def flows(provider):
    return ManualFlowFactory(provider)


@pytest.fixture
def manager(registry, store, provider, flows):
    return AccountManager(registry, store, provider, flow_factory=flows)


class TestCredentials:
    def test_set_and_get(self, manager):
        manager.set_credentials("abc", "xyz")
        assert manager.get_credentials() == ClientCredentials("abc", "xyz")

    def test_import_file(self, manager, tmp_path):
        path = tmp_path / "client_secret.json"
        path.write_text(json.dumps({"installed": {"client_id": "abc", "client_secret": "xyz"}}))
        assert manager.import_credentials_file(path) == ClientCredentials("abc", "xyz")
        assert manager.get_credentials() == ClientCredentials("abc", "xyz")


class TestAddAccount:
    def test_end_to_end_manual(self, manager, provider, store):
        manager.set_credentials("abc", "xyz")

        account = manager.add_account("alice@example.com", manual=True)

        stored = store.get("alice@example.com")
        assert stored == account
        assert stored.identity == "alice@example.com"
        assert stored.refresh_token
        assert provider.exchange_calls[0][1] == "CODE123"
        assert provider.exchange_calls[0][0] == ClientCredentials("abc", "xyz")

    def test_duplicate_fails_before_network(self, manager, provider, flows):
        manager.set_credentials("abc", "xyz")
        manager.add_account("alice@example.com", manual=True)

        with pytest.raises(DuplicateAccount):
            manager.add_account("alice@example.com", manual=True)

        assert flows.calls == 1
        assert len(provider.exchange_calls) == 1

    def test_not_configured(self, manager, provider, flows):
        with pytest.raises(NotConfigured):
            manager.add_account("alice@example.com", manual=True)
        assert flows.calls == 0
        assert provider.exchange_calls == []

    def test_empty_identity(self, manager):
        manager.set_credentials("abc", "xyz")
        with pytest.raises(ValueError):
            manager.add_account("  ")

    def test_failed_flow_stores_nothing(self, registry, store, provider):
        registry.set("abc", "xyz")
        flows = ManualFlowFactory(provider, pasted_state="FORGED")
        manager = AccountManager(registry, store, provider, flow_factory=flows)

        with pytest.raises(StateMismatch):
            manager.add_account("alice@example.com", manual=True)

        assert store.get("alice@example.com") is None
        assert provider.exchange_calls == []

    def test_caches_initial_access_token(self, manager, provider):
        manager.set_credentials("abc", "xyz")
        manager.add_account("alice@example.com", manual=True)

        assert manager.get_access_token("alice@example.com") == "access-initial"
        assert provider.refresh_calls == []


class TestRemoveAccount:
    def test_remove(self, manager):
        manager.set_credentials("abc", "xyz")
        manager.add_account("alice@example.com", manual=True)
        assert manager.remove_account("alice@example.com").removed is True
        assert manager.list_accounts() == []

    def test_remove_missing(self, manager):
        assert manager.remove_account("ghost@example.com").removed is False

    def test_remove_with_revoke(self, manager, provider):
        manager.set_credentials("abc", "xyz")
        manager.add_account("alice@example.com", manual=True)
        result = manager.remove_account("alice@example.com", revoke=True)
        assert result.removed is True
        assert result.revoke_error is None
        assert provider.revoke_calls == ["refresh-initial"]

    def test_failed_revoke_still_removes(self, manager, provider, capsys):
        manager.set_credentials("abc", "xyz")
        manager.add_account("alice@example.com", manual=True)
        provider.revoke_error = OAuthProviderError("token revoke rejected (400)")
        capsys.readouterr()

        result = manager.remove_account("alice@example.com", revoke=True)

        assert result.removed is True
        assert "revoke rejected" in result.revoke_error
        assert manager.list_accounts() == []
        assert capsys.readouterr().out == ""


class TestLookup:
    def test_get_account_missing(self, manager):
        with pytest.raises(AccountNotFound):
            manager.get_account("ghost@example.com")

    def test_get_access_token_missing(self, manager):
        with pytest.raises(AccountNotFound):
            manager.get_access_token("ghost@example.com")

    def test_list_accounts(self, manager):
        manager.set_credentials("abc", "xyz")
        manager.add_account("b@example.com", manual=True)
        manager.add_account("a@example.com", manual=True)
        assert [a.identity for a in manager.list_accounts()] == ["b@example.com", "a@example.com"]


class TestFromConfig:
    def test_uses_configured_paths(self, tmp_path, monkeypatch):
        monkeypatch.setattr("gdcli.config.CREDENTIALS_FILE", tmp_path / "c.json")
        monkeypatch.setattr("gdcli.config.ACCOUNTS_FILE", tmp_path / "a.json")
        manager = AccountManager.from_config()
        assert manager.registry.path == tmp_path / "c.json"
        assert manager.store.path == tmp_path / "a.json"
