"""
config.py

Loads gdcli settings from the environment (and an optional .env file via
python-dotenv). Exposes them as typed constants grouped by section.
Part of gdcli - Google Drive command-line client.
"""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# ---------------------------------------------------------------------------
# Load .env file from the working directory (or the nearest parent)
# ---------------------------------------------------------------------------
load_dotenv(find_dotenv(usecwd=True))


def _get_optional(key: str, default: str = "") -> str:
    """
    Retrieve an optional environment variable with a default.

    Args:
        key: The environment variable name.
        default: Fallback value if not set.

    Returns:
        The value string or default.
    """
    return os.getenv(key, default).strip() or default


def _get_int(key: str, default: int = 0) -> int:
    """
    Retrieve an environment variable as an integer.

    Args:
        key: The environment variable name.
        default: Fallback if not set or not a valid int.

    Returns:
        The integer value.
    """
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(key: str, default: float = 0.0) -> float:
    """
    Retrieve an environment variable as a float.

    Args:
        key: The environment variable name.
        default: Fallback if not set or not a valid float.

    Returns:
        The float value.
    """
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ===========================================================================
# Section 1 — Storage
# ===========================================================================

GDCLI_HOME: Path = Path(_get_optional("GDCLI_HOME", "~/.gdcli")).expanduser()
CREDENTIALS_FILE: Path = GDCLI_HOME / "credentials.json"
ACCOUNTS_FILE: Path = GDCLI_HOME / "accounts.json"
LOGS_DIR: Path = GDCLI_HOME / "logs"
LOG_FILE: Path = LOGS_DIR / "gdcli.log"

# ===========================================================================
# Section 2 — OAuth provider (Google)
# ===========================================================================

GOOGLE_AUTH_URL: str = _get_optional(
    "GDCLI_AUTH_URL", "https://accounts.google.com/o/oauth2/v2/auth"
)
GOOGLE_TOKEN_URL: str = _get_optional(
    "GDCLI_TOKEN_URL", "https://oauth2.googleapis.com/token"
)
GOOGLE_REVOKE_URL: str = _get_optional(
    "GDCLI_REVOKE_URL", "https://oauth2.googleapis.com/revoke"
)
DRIVE_SCOPES: list[str] = _get_optional(
    "GDCLI_SCOPES", "https://www.googleapis.com/auth/drive"
).split()

# ===========================================================================
# Section 3 — Authorization flow
# ===========================================================================

LOOPBACK_HOST: str = _get_optional("GDCLI_LOOPBACK_HOST", "127.0.0.1")
CALLBACK_PATH: str = "/oauth2callback"
MANUAL_REDIRECT_URI: str = _get_optional("GDCLI_MANUAL_REDIRECT_URI", "http://localhost")
AUTH_TIMEOUT_SECONDS: float = _get_float("GDCLI_AUTH_TIMEOUT", 120.0)

# ===========================================================================
# Section 4 — Tokens and HTTP
# ===========================================================================

EXPIRY_MARGIN_SECONDS: int = _get_int("GDCLI_EXPIRY_MARGIN", 60)
HTTP_TIMEOUT_SECONDS: float = _get_float("GDCLI_HTTP_TIMEOUT", 30.0)
DRIVE_API_URL: str = _get_optional(
    "GDCLI_DRIVE_API_URL", "https://www.googleapis.com/drive/v3"
)

# ===========================================================================
# Section 5 — General
# ===========================================================================

LOG_LEVEL: str = _get_optional("GDCLI_LOG_LEVEL", "INFO").upper()


def as_dict() -> dict[str, str | int | float]:
    """
    Return all configuration values as a flat dictionary.
    Contains no secrets: client credentials and tokens live in the
    stores, never in the environment.

    Returns:
        A dict of all config keys and their current values.

    Example:
        cfg = as_dict()
    """
    return {
        "GDCLI_HOME": str(GDCLI_HOME),
        "CREDENTIALS_FILE": str(CREDENTIALS_FILE),
        "ACCOUNTS_FILE": str(ACCOUNTS_FILE),
        "LOG_FILE": str(LOG_FILE),
        "GOOGLE_AUTH_URL": GOOGLE_AUTH_URL,
        "GOOGLE_TOKEN_URL": GOOGLE_TOKEN_URL,
        "GOOGLE_REVOKE_URL": GOOGLE_REVOKE_URL,
        "DRIVE_SCOPES": " ".join(DRIVE_SCOPES),
        "LOOPBACK_HOST": LOOPBACK_HOST,
        "MANUAL_REDIRECT_URI": MANUAL_REDIRECT_URI,
        "AUTH_TIMEOUT_SECONDS": AUTH_TIMEOUT_SECONDS,
        "EXPIRY_MARGIN_SECONDS": EXPIRY_MARGIN_SECONDS,
        "HTTP_TIMEOUT_SECONDS": HTTP_TIMEOUT_SECONDS,
        "DRIVE_API_URL": DRIVE_API_URL,
        "LOG_LEVEL": LOG_LEVEL,
    }
