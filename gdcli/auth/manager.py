"""
manager.py

Account manager for gdcli. Wires the credential registry, account store,
authorization flow and token accessor together behind the operations the
CLI exposes. All collaborators are explicit constructor arguments.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from gdcli import config
from gdcli.auth.errors import AccountNotFound, DuplicateAccount
from gdcli.auth.flow import AuthorizationFlow
from gdcli.auth.google_oauth import GoogleOAuthProvider, OAuthProviderError
from gdcli.auth.models import Account, ClientCredentials, RemovalResult
from gdcli.auth.store import AccountStore, CredentialRegistry, parse_client_secrets
from gdcli.auth.token_manager import TokenAccessor

_log = logging.getLogger("gdcli.auth.manager")


class AccountManager:
    """
    Central entry point for account and credential operations.

    Example:
        manager = AccountManager.from_config()
        manager.add_account("alice@example.com", manual=True)
        token = manager.get_access_token("alice@example.com")
    """

    def __init__(
        self,
        registry: CredentialRegistry,
        store: AccountStore,
        provider: GoogleOAuthProvider,
        flow_factory: Callable[[ClientCredentials], AuthorizationFlow] | None = None,
        tokens: TokenAccessor | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.provider = provider
        self._flow_factory = flow_factory or (
            lambda client: AuthorizationFlow(client, self.provider)
        )
        self.tokens = tokens or TokenAccessor(store, registry, provider)

    @classmethod
    def from_config(cls) -> AccountManager:
        """Build a manager over the files configured in gdcli.config."""
        return cls(
            registry=CredentialRegistry(config.CREDENTIALS_FILE),
            store=AccountStore(config.ACCOUNTS_FILE),
            provider=GoogleOAuthProvider(),
        )

    # --- Credentials ---

    def set_credentials(self, client_id: str, client_secret: str) -> None:
        self.registry.set(client_id, client_secret)

    def import_credentials_file(self, path: Path) -> ClientCredentials:
        """
        Read a Google client-secrets file and store its client identity.

        Args:
            path: Path to the JSON file downloaded from the Cloud console.

        Returns:
            The stored credentials.
        """
        creds = parse_client_secrets(path)
        self.registry.set(creds.client_id, creds.client_secret)
        return creds

    def get_credentials(self) -> ClientCredentials | None:
        return self.registry.get()

    # --- Accounts ---

    def add_account(self, identity: str, manual: bool = False) -> Account:
        """
        Authorize a new account and store its tokens.

        Preconditions are checked before any network traffic: credentials
        must be configured and the identity must not already exist.

        Args:
            identity: The account email.
            manual: Use the copy-paste flow instead of the loopback redirect.

        Returns:
            The stored account.

        Raises:
            ValueError: If identity is empty.
            NotConfigured: If no client credentials are set.
            DuplicateAccount: If the identity is already stored.
            AuthorizationError: If the consent flow fails.
        """
        identity = (identity or "").strip()
        if not identity:
            raise ValueError("Account identity must not be empty")

        client = self.registry.require()
        if self.store.has(identity):
            raise DuplicateAccount(identity)

        _log.info("Adding account '%s' (manual=%s)", identity, manual)
        grant = self._flow_factory(client).authorize(manual=manual)

        account = Account(
            identity=identity,
            refresh_token=grant.refresh_token,
            access_token=grant.access_token,
            access_token_expiry=grant.expires_at,
        )
        self.store.add(account)
        return account

    def remove_account(self, identity: str, revoke: bool = False) -> RemovalResult:
        """
        Delete an account's stored tokens.

        Args:
            identity: The account email.
            revoke: Also revoke the refresh token at Google (best effort).

        Returns:
            Whether a record was removed, plus the revoke failure if there was one.
        """
        revoke_error = None
        if revoke:
            account = self.store.get(identity)
            if account is not None:
                try:
                    self.provider.revoke(account.refresh_token)
                except OAuthProviderError as exc:
                    _log.warning("Revoking token for '%s' failed: %s", identity, exc)
                    revoke_error = str(exc)
        return RemovalResult(removed=self.store.remove(identity), revoke_error=revoke_error)

    def list_accounts(self) -> list[Account]:
        return self.store.list()

    def get_account(self, identity: str) -> Account:
        account = self.store.get(identity)
        if account is None:
            raise AccountNotFound(identity)
        return account

    # --- Tokens ---

    def get_access_token(self, identity: str) -> str:
        """Return a valid access token for `identity`, refreshing if needed."""
        return self.tokens.resolve(self.get_account(identity))
