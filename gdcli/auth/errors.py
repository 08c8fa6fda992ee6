"""
errors.py

Exception taxonomy for gdcli. Every error the auth core raises is a
GdcliError subclass; the CLI catches the base class once and reports it.
Part of gdcli - Google Drive command-line client.
"""


class GdcliError(Exception):
    """Base class for all user-visible gdcli failures."""


class NotConfigured(GdcliError):
    """No OAuth client credentials have been set."""

    def __init__(self) -> None:
        super().__init__(
            "No credentials configured. Run: gdcli accounts credentials <credentials.json>"
        )


class DuplicateAccount(GdcliError):
    """An account with this identity is already stored."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"Account '{identity}' already exists")
        self.identity = identity


class AccountNotFound(GdcliError):
    """No account with this identity is stored."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"Account '{identity}' not found")
        self.identity = identity


class StorageIOError(GdcliError):
    """A durable store could not be read or written, or is corrupt."""


# ---------------------------------------------------------------------------
# Authorization flow
# ---------------------------------------------------------------------------

class AuthorizationError(GdcliError):
    """Terminal failure of an interactive authorization session."""


class StateMismatch(AuthorizationError):
    """The redirect echoed a state value other than the one this session issued."""

    def __init__(self) -> None:
        super().__init__(
            "Authorization response state does not match this session "
            "(stale or forged redirect). Run the command again."
        )


class UserDenied(AuthorizationError):
    """The provider redirected back with an error instead of a code."""

    def __init__(self, error: str, description: str = "") -> None:
        detail = f": {description}" if description else ""
        super().__init__(f"Authorization was not granted ({error}){detail}")
        self.error = error


class AuthorizationTimeout(AuthorizationError):
    """No redirect arrived at the loopback listener in time."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.0f}s waiting for the browser redirect")
        self.timeout = timeout


class InvalidRedirect(AuthorizationError):
    """The redirect (received or pasted) carries neither a code nor an error."""


class TokenExchangeFailed(AuthorizationError):
    """The token endpoint rejected, or could not be reached for, the code exchange."""


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------

class ReauthorizationRequired(GdcliError):
    """The stored refresh token was rejected; the account must be added again."""

    def __init__(self, identity: str, reason: str = "") -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Refresh token for '{identity}' is no longer valid{detail}. "
            f"Run: gdcli accounts remove {identity} && gdcli accounts add {identity}"
        )
        self.identity = identity


class TokenRefreshFailed(GdcliError):
    """A refresh-token grant failed for a transient reason (network, 5xx)."""


class RemoteApiError(GdcliError):
    """The Drive API returned a failure response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
