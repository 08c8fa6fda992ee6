"""
session.py

Bearer-authenticated HTTP session for Drive API calls. The access token
comes from TokenAccessor; a 401 invalidates it and the request is replayed
once with a freshly resolved token.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import logging

import requests

from gdcli import config
from gdcli.auth.errors import RemoteApiError
from gdcli.auth.token_manager import TokenAccessor

_log = logging.getLogger("gdcli.drive.session")


class DriveSession(requests.Session):
    """
    requests.Session bound to one gdcli account.

    Example:
        session = DriveSession(manager.tokens, "alice@example.com")
        response = session.get(f"{config.DRIVE_API_URL}/about", params={"fields": "user"})
    """

    def __init__(
        self,
        tokens: TokenAccessor,
        identity: str,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__()
        self._tokens = tokens
        self.identity = identity
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        base_headers = dict(kwargs.pop("headers", None) or {})

        def send(token: str) -> requests.Response:
            headers = {**base_headers, "Authorization": f"Bearer {token}"}
            return super(DriveSession, self).request(method, url, headers=headers, **kwargs)

        response = send(self._tokens.resolve(self.identity))
        if response.status_code == 401:
            _log.info("Drive API returned 401 for '%s'; refreshing token once", self.identity)
            self._tokens.invalidate(self.identity)
            response = send(self._tokens.resolve(self.identity))
        return response


def fetch_about(session: DriveSession, api_url: str = config.DRIVE_API_URL) -> dict:
    """
    Fetch the Drive `about` resource (user and storage quota).

    Raises:
        RemoteApiError: On transport failure or a non-2xx response.
    """
    try:
        response = session.get(
            f"{api_url}/about",
            params={"fields": "user(displayName,emailAddress),storageQuota(limit,usage)"},
        )
    except requests.RequestException as exc:
        raise RemoteApiError(f"Drive API request failed: {exc}") from exc

    if not response.ok:
        raise RemoteApiError(
            f"Drive API request failed ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )
    return response.json()
