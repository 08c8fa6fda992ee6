"""
store.py

Durable JSON stores for the OAuth client credentials and the per-account
token records. Every mutation rewrites the file atomically (temp file in
the same directory, fsync, os.replace) so a crash never leaves a partial
store behind.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from gdcli.auth.errors import AccountNotFound, DuplicateAccount, NotConfigured, StorageIOError
from gdcli.auth.models import Account, ClientCredentials

_log = logging.getLogger("gdcli.auth.store")

FILE_MODE = 0o600


def read_json(path: Path) -> Any | None:
    """
    Read a JSON document from disk.

    Args:
        path: File to read.

    Returns:
        The decoded document, or None if the file does not exist.

    Raises:
        StorageIOError: If the file exists but cannot be read or parsed.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise StorageIOError(f"{path} is corrupt: {exc}") from exc
    except OSError as exc:
        raise StorageIOError(f"Could not read {path}: {exc}") from exc

    try:
        return json.loads(raw)
    except ValueError as exc:
        raise StorageIOError(f"{path} is corrupt: {exc}") from exc


def write_json_atomic(path: Path, payload: Any) -> None:
    """
    Write `payload` as JSON to `path`, replacing it atomically.

    Raises:
        StorageIOError: If any step of the write fails. The original file
            is left untouched in that case.
    """
    content = json.dumps(payload, indent=2) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise StorageIOError(f"Could not write {path}: {exc}") from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise StorageIOError(f"Could not write {path}: {exc}") from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class CredentialRegistry:
    """
    Holds the single OAuth client identity shared by all accounts.

    Example:
        registry = CredentialRegistry(Path("~/.gdcli/credentials.json"))
        registry.set("abc.apps.googleusercontent.com", "secret")
        creds = registry.require()
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def set(self, client_id: str, client_secret: str) -> None:
        """Persist the client identity, replacing any previous value."""
        client_id = (client_id or "").strip()
        client_secret = (client_secret or "").strip()
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret must both be non-empty")

        with self._lock:
            write_json_atomic(
                self._path,
                {"client_id": client_id, "client_secret": client_secret},
            )
        _log.info("Client credentials saved to %s", self._path)

    def get(self) -> ClientCredentials | None:
        """Return the stored client identity, or None if not configured."""
        with self._lock:
            data = read_json(self._path)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise StorageIOError(f"{self._path} is corrupt: expected an object")

        # Files written by the older Node gdcli use clientId/clientSecret.
        client_id = str(data.get("client_id") or data.get("clientId") or "").strip()
        client_secret = str(data.get("client_secret") or data.get("clientSecret") or "").strip()
        if not client_id or not client_secret:
            raise StorageIOError(f"{self._path} is corrupt: client_id or client_secret missing")
        return ClientCredentials(client_id=client_id, client_secret=client_secret)

    def require(self) -> ClientCredentials:
        """Return the stored client identity or raise NotConfigured."""
        creds = self.get()
        if creds is None:
            raise NotConfigured()
        return creds


def parse_client_secrets(path: Path) -> ClientCredentials:
    """
    Extract the client id/secret from a Google client-secrets JSON file.

    Accepts the "installed" and "web" layouts downloaded from the Google
    Cloud console, and a flat {"clientId", "clientSecret"} object.

    Raises:
        StorageIOError: If the file cannot be read or is not JSON.
        ValueError: If no client id/secret pair is present.
    """
    data = read_json(path)
    if data is None:
        raise StorageIOError(f"Credentials file not found: {path}")
    if not isinstance(data, dict):
        raise ValueError("Invalid credentials file")

    wrapped = data.get("installed") or data.get("web") or {}
    if not isinstance(wrapped, dict):
        raise ValueError("Invalid credentials file")
    client_id = wrapped.get("client_id") or data.get("clientId") or data.get("client_id")
    client_secret = (
        wrapped.get("client_secret") or data.get("clientSecret") or data.get("client_secret")
    )
    if not client_id or not client_secret:
        raise ValueError("Invalid credentials file")
    return ClientCredentials(client_id=str(client_id).strip(), client_secret=str(client_secret).strip())


class AccountStore:
    """
    Durable mapping from account identity to token material.

    The file is re-read on every operation so edits made between commands
    are never lost. Writes are serialized by a store-wide lock, and token
    updates additionally hold the per-identity lock returned by `lock()`.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._io_lock = threading.RLock()
        self._identity_locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # --- Internal ---

    def _load(self) -> list[Account]:
        data = read_json(self._path)
        if data is None:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("accounts"), list):
            raise StorageIOError(f"{self._path} is corrupt: expected an 'accounts' list")

        accounts: list[Account] = []
        for index, entry in enumerate(data["accounts"]):
            try:
                accounts.append(Account.from_dict(entry))
            except ValueError as exc:
                raise StorageIOError(f"{self._path} is corrupt: entry {index}: {exc}") from exc
        return accounts

    def _save(self, accounts: list[Account]) -> None:
        write_json_atomic(self._path, {"accounts": [a.to_dict() for a in accounts]})

    # --- Public API ---

    @contextmanager
    def lock(self, identity: str) -> Iterator[None]:
        """Hold the single-writer lock for one identity."""
        with self._locks_guard:
            identity_lock = self._identity_locks.setdefault(identity, threading.RLock())
        with identity_lock:
            yield

    def list(self) -> list[Account]:
        """Return all accounts in insertion order."""
        with self._io_lock:
            return self._load()

    def get(self, identity: str) -> Account | None:
        """Return the account for `identity`, or None if absent."""
        with self._io_lock:
            for account in self._load():
                if account.identity == identity:
                    return account
        return None

    def has(self, identity: str) -> bool:
        return self.get(identity) is not None

    def add(self, account: Account) -> None:
        """
        Persist a new account.

        Raises:
            DuplicateAccount: If the identity is already stored.
            ValueError: If the account has no refresh token.
        """
        if not account.identity or not account.refresh_token:
            raise ValueError("An account needs an identity and a non-empty refresh token")

        with self.lock(account.identity), self._io_lock:
            accounts = self._load()
            if any(a.identity == account.identity for a in accounts):
                raise DuplicateAccount(account.identity)
            accounts.append(account)
            self._save(accounts)
        _log.info("Account '%s' added", account.identity)

    def remove(self, identity: str) -> bool:
        """Delete the account for `identity`. Returns False if there was none."""
        with self.lock(identity), self._io_lock:
            accounts = self._load()
            remaining = [a for a in accounts if a.identity != identity]
            if len(remaining) == len(accounts):
                _log.info("Remove requested for unknown account '%s'", identity)
                return False
            self._save(remaining)
        _log.info("Account '%s' removed", identity)
        return True

    def update(self, identity: str, mutator: Callable[[Account], Account]) -> Account:
        """
        Atomically read, modify and write one account's token fields.

        Args:
            identity: Account to modify.
            mutator: Receives the current record and returns the replacement.

        Returns:
            The record as written.

        Raises:
            AccountNotFound: If the identity is not stored.
            ValueError: If the mutator changed the identity or blanked the refresh token.
        """
        with self.lock(identity), self._io_lock:
            accounts = self._load()
            for index, current in enumerate(accounts):
                if current.identity == identity:
                    break
            else:
                raise AccountNotFound(identity)

            updated = mutator(current)
            if updated.identity != identity:
                raise ValueError("update() may not change an account's identity")
            if not updated.refresh_token:
                raise ValueError("update() may not clear an account's refresh token")

            accounts[index] = updated
            self._save(accounts)
        _log.debug("Account '%s' token fields updated", identity)
        return updated
