"""
token_manager.py

Supplies a currently valid access token for a stored account, refreshing
it through Google's token endpoint when the cached one is missing or
about to expire, and writing the result back to the account store.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from gdcli import config
from gdcli.auth.errors import AccountNotFound, ReauthorizationRequired, TokenRefreshFailed
from gdcli.auth.google_oauth import GoogleOAuthProvider, OAuthProviderError
from gdcli.auth.models import Account, utc_now
from gdcli.auth.store import AccountStore, CredentialRegistry

_log = logging.getLogger("gdcli.auth.tokens")


def token_expires_soon(
    account: Account,
    margin: timedelta,
    now: datetime,
) -> bool:
    """Return True if the cached access token is missing or expires within `margin`."""
    if not account.access_token or account.access_token_expiry is None:
        return True
    return account.access_token_expiry <= now + margin


class TokenAccessor:
    """
    Resolves stored accounts to valid bearer tokens.

    The check-refresh-write sequence runs under the account's store lock
    and re-reads the record inside it, so two resolves racing for the same
    identity produce a single refresh.
    """

    def __init__(
        self,
        store: AccountStore,
        registry: CredentialRegistry,
        provider: GoogleOAuthProvider,
        margin_seconds: int = config.EXPIRY_MARGIN_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._provider = provider
        self._margin = timedelta(seconds=margin_seconds)
        self._clock = clock

    def resolve(self, account: Account | str) -> str:
        """
        Return a valid access token for `account`.

        Args:
            account: A stored Account or its identity.

        Returns:
            The access token string.

        Raises:
            AccountNotFound: If the identity is not stored.
            NotConfigured: If a refresh is needed but no client credentials are set.
            ReauthorizationRequired: If Google rejected the refresh token.
            TokenRefreshFailed: If the refresh failed for a transient reason.
        """
        identity = account.identity if isinstance(account, Account) else account

        with self._store.lock(identity):
            current = self._store.get(identity)
            if current is None:
                raise AccountNotFound(identity)

            if not token_expires_soon(current, self._margin, self._clock()):
                return current.access_token

            _log.info("Access token for '%s' missing or expiring; refreshing", identity)
            client = self._registry.require()
            try:
                grant = self._provider.refresh(client, current.refresh_token)
            except OAuthProviderError as exc:
                if exc.requires_reauthorization:
                    _log.warning("Refresh token for '%s' rejected: %s", identity, exc.error)
                    raise ReauthorizationRequired(identity, exc.error) from exc
                raise TokenRefreshFailed(
                    f"Could not refresh access token for '{identity}': {exc}"
                ) from exc

            def apply(record: Account) -> Account:
                return dataclasses.replace(
                    record,
                    access_token=grant.access_token,
                    access_token_expiry=grant.expires_at,
                    refresh_token=grant.refresh_token or record.refresh_token,
                )

            updated = self._store.update(identity, apply)
            return updated.access_token

    def invalidate(self, identity: str) -> None:
        """Drop the cached access token so the next resolve refreshes."""
        self._store.update(
            identity,
            lambda record: dataclasses.replace(
                record, access_token=None, access_token_expiry=None
            ),
        )
        _log.info("Cached access token for '%s' invalidated", identity)
