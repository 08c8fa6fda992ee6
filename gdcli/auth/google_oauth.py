"""
google_oauth.py

Client for Google's OAuth2 endpoints: builds the consent URL, exchanges
authorization codes, performs refresh-token grants and revokes tokens.
Part of gdcli - Google Drive command-line client.

Auth Flow: OAuth2 Authorization Code Flow with PKCE (installed app)
Provider: Google
Scopes: https://www.googleapis.com/auth/drive
Auth URL: https://accounts.google.com/o/oauth2/v2/auth
Token URL: https://oauth2.googleapis.com/token
Redirect URI: http://127.0.0.1:<ephemeral port>/oauth2callback
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

import requests

from gdcli import config
from gdcli.auth.models import ClientCredentials, TokenGrant, utc_now

_log = logging.getLogger("gdcli.auth.google")

# Token endpoint errors meaning the grant itself is dead, not the network.
REAUTH_ERRORS = frozenset({"invalid_grant", "unauthorized_client", "invalid_client"})


class OAuthProviderError(Exception):
    """
    A token endpoint call failed.

    Attributes:
        error: OAuth error code from the response body ("invalid_grant", ...),
            or "" for transport failures and unparseable bodies.
        status_code: HTTP status, or None if no response was received.
    """

    def __init__(self, message: str, error: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.error = error
        self.status_code = status_code

    @property
    def requires_reauthorization(self) -> bool:
        return self.error in REAUTH_ERRORS


def generate_state() -> str:
    """Return a fresh opaque state token for one authorization session."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """Return a PKCE code verifier (43-128 URL-safe characters)."""
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    """Derive the S256 PKCE challenge for `verifier`."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _resolve_expiry(payload: dict) -> timedelta | None:
    expires_in = payload.get("expires_in")
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return timedelta(seconds=max(1, seconds))


def parse_token_response(payload: dict) -> TokenGrant:
    """Convert a token endpoint JSON body into a TokenGrant."""
    access_token = str(payload.get("access_token") or "").strip() or None
    refresh_token = str(payload.get("refresh_token") or "").strip() or None
    lifetime = _resolve_expiry(payload)
    if access_token and lifetime is None:
        lifetime = timedelta(hours=1)
    return TokenGrant(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=utc_now() + lifetime if lifetime else None,
        scope=str(payload.get("scope") or ""),
    )


class GoogleOAuthProvider:
    """
    Thin wrapper over Google's OAuth2 endpoints.

    Example:
        provider = GoogleOAuthProvider()
        url = provider.authorization_url(creds, redirect_uri, state, challenge)
        grant = provider.exchange_code(creds, code, redirect_uri, verifier)
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        auth_url: str = config.GOOGLE_AUTH_URL,
        token_url: str = config.GOOGLE_TOKEN_URL,
        revoke_url: str = config.GOOGLE_REVOKE_URL,
        scopes: list[str] | None = None,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self.auth_url = auth_url
        self.token_url = token_url
        self.revoke_url = revoke_url
        self.scopes = list(scopes or config.DRIVE_SCOPES)
        self.timeout = timeout

    def authorization_url(
        self,
        client: ClientCredentials,
        redirect_uri: str,
        state: str,
        challenge: str,
    ) -> str:
        """
        Build the consent URL the user opens in a browser.

        `access_type=offline` and `prompt=consent` make Google issue a
        refresh token even if the user approved this client before.
        """
        params = {
            "client_id": client.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def _post_token(self, payload: dict, action: str) -> dict:
        try:
            response = self._session.post(self.token_url, data=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            _log.error("Google %s request failed: %s", action, exc)
            raise OAuthProviderError(f"{action} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.ok:
            error_code = str(body.get("error") or "")
            description = str(body.get("error_description") or response.reason or "")
            _log.error(
                "Google %s rejected (%s): %s %s",
                action,
                response.status_code,
                error_code,
                description,
            )
            raise OAuthProviderError(
                f"{action} rejected ({response.status_code}): {error_code or description}",
                error=error_code,
                status_code=response.status_code,
            )

        if not body:
            raise OAuthProviderError(
                f"{action} returned an invalid response body",
                status_code=response.status_code,
            )
        return body

    def exchange_code(
        self,
        client: ClientCredentials,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenGrant:
        """
        Exchange an authorization code for access and refresh tokens.

        Raises:
            OAuthProviderError: On transport failure or a rejected exchange.
        """
        body = self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "code_verifier": code_verifier,
            },
            "token exchange",
        )
        _log.info("Google authorization code exchanged")
        return parse_token_response(body)

    def refresh(self, client: ClientCredentials, refresh_token: str) -> TokenGrant:
        """
        Run a refresh-token grant.

        Raises:
            OAuthProviderError: On transport failure or a rejected grant.
        """
        body = self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client.client_id,
                "client_secret": client.client_secret,
            },
            "token refresh",
        )
        grant = parse_token_response(body)
        if not grant.access_token:
            raise OAuthProviderError("token refresh response missing access_token")
        _log.info("Google access token refreshed")
        return grant

    def revoke(self, token: str) -> None:
        """
        Revoke a refresh or access token.

        Raises:
            OAuthProviderError: If Google does not confirm the revocation.
        """
        try:
            response = self._session.post(
                self.revoke_url,
                data={"token": token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OAuthProviderError(f"token revoke request failed: {exc}") from exc

        if not response.ok:
            raise OAuthProviderError(
                f"token revoke rejected ({response.status_code})",
                status_code=response.status_code,
            )
        _log.info("Google token revoked")
