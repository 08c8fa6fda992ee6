"""
models.py

Data records for the auth core: client credentials, stored accounts,
token-endpoint grants, and the transient authorization session.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, unique


def utc_now() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp string to an aware UTC datetime."""
    if not value or not isinstance(value, str):
        return None

    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def iso_utc(value: datetime) -> str:
    """Format an aware datetime as an ISO UTC string."""
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class ClientCredentials:
    """The OAuth client identity shared by every account."""

    client_id: str
    client_secret: str


@dataclass(frozen=True)
class Account:
    """
    Token material for one authorized identity.

    Attributes:
        identity: Unique key, normally the Google account email.
        refresh_token: Long-lived credential; never empty once stored.
        access_token: Cached short-lived bearer token, if any.
        access_token_expiry: When the cached access token stops working.
    """

    identity: str
    refresh_token: str
    access_token: str | None = None
    access_token_expiry: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "email": self.identity,
            "oauth2": {
                "refresh_token": self.refresh_token,
                "access_token": self.access_token,
                "expires_at": (
                    iso_utc(self.access_token_expiry) if self.access_token_expiry else None
                ),
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> Account:
        """
        Build an Account from its stored form. Raises ValueError if malformed.

        Entries written by the older Node gdcli use camelCase keys
        (refreshToken, accessToken) and carry a per-account clientId and
        clientSecret; those are read here and saved in the current shape
        on the next write.
        """
        if not isinstance(data, dict):
            raise ValueError("account entry is not an object")
        oauth2 = data.get("oauth2")
        if not isinstance(oauth2, dict):
            raise ValueError("account entry has no oauth2 section")

        identity = _text_field(data, "email")
        refresh_token = _text_field(oauth2, "refresh_token", "refreshToken")
        if not identity or not refresh_token:
            raise ValueError("account entry is missing email or refresh_token")

        expires_at = oauth2.get("expires_at")
        if expires_at is not None and not isinstance(expires_at, str):
            raise ValueError("expires_at must be an ISO-8601 string")

        return cls(
            identity=identity,
            refresh_token=refresh_token,
            access_token=_text_field(oauth2, "access_token", "accessToken") or None,
            access_token_expiry=parse_iso_datetime(expires_at),
        )


def _text_field(data: dict, *keys: str) -> str:
    """Return the first non-empty string among `keys`, stripped."""
    for key in keys:
        value = data.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
        if value.strip():
            return value.strip()
    return ""


@dataclass(frozen=True)
class RemovalResult:
    """Outcome of removing an account."""

    removed: bool
    revoke_error: str | None = None


@dataclass(frozen=True)
class TokenGrant:
    """Parsed token-endpoint response."""

    access_token: str | None
    refresh_token: str | None
    expires_at: datetime | None
    scope: str = ""


@unique
class FlowMode(Enum):
    BROWSER = "browser"
    MANUAL = "manual"


@unique
class SessionPhase(Enum):
    """Phases of one interactive authorization session."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


# Legal phase transitions. COMPLETE and FAILED are terminal.
ALLOWED_TRANSITIONS: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.IDLE: frozenset({SessionPhase.AWAITING_REDIRECT, SessionPhase.FAILED}),
    SessionPhase.AWAITING_REDIRECT: frozenset({SessionPhase.EXCHANGING, SessionPhase.FAILED}),
    SessionPhase.EXCHANGING: frozenset({SessionPhase.COMPLETE, SessionPhase.FAILED}),
    SessionPhase.COMPLETE: frozenset(),
    SessionPhase.FAILED: frozenset(),
}


@dataclass
class AuthorizationSession:
    """Transient state for one `accounts add` invocation. Never persisted."""

    state: str
    code_verifier: str = field(repr=False)
    mode: FlowMode
    redirect_uri: str = ""
    phase: SessionPhase = SessionPhase.IDLE

    def transition(self, target: SessionPhase) -> None:
        """Move to `target`, raising RuntimeError on an illegal transition."""
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Illegal authorization phase transition {self.phase.value} -> {target.value}"
            )
        self.phase = target

    @property
    def finished(self) -> bool:
        return self.phase in (SessionPhase.COMPLETE, SessionPhase.FAILED)
