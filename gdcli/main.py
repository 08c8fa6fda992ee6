"""
main.py

Entry point for the gdcli command-line client.
Parses the command line, dispatches account-management and per-account
commands, and turns gdcli errors into a message and an exit status.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from gdcli import __version__, config
from gdcli.auth.errors import GdcliError
from gdcli.auth.manager import AccountManager
from gdcli.drive.session import DriveSession, fetch_about

_log = logging.getLogger("gdcli.main")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

USAGE = """\
gdcli - Google Drive CLI

USAGE

  gdcli accounts <action>                    Account management
  gdcli <email> <command>                    Per-account commands
  gdcli config                               Show effective configuration

ACCOUNT COMMANDS

  gdcli accounts credentials <file.json>     Set OAuth credentials (once)
  gdcli accounts list                        List configured accounts
  gdcli accounts add <email> [--manual]      Add account (--manual for browserless OAuth)
  gdcli accounts remove <email> [--revoke]   Remove account

PER-ACCOUNT COMMANDS

  gdcli <email> token                        Print a valid access token
  gdcli <email> about                        Show Drive user and storage quota

DATA STORAGE

  ~/.gdcli/credentials.json   OAuth client credentials
  ~/.gdcli/accounts.json      Account tokens
  ~/.gdcli/logs/gdcli.log     Log file
  (set GDCLI_HOME to relocate)
"""


def configure_logging() -> None:
    """Attach the gdcli log file handler. Console output stays on print()."""
    root = logging.getLogger("gdcli")
    if root.handlers:
        return
    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(config.LOG_FILE, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")
    )
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    root.propagate = False


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def build_accounts_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gdcli accounts", description="Account management")
    actions = parser.add_subparsers(dest="action", required=True, metavar="action")

    credentials = actions.add_parser("credentials", help="Set OAuth client credentials")
    credentials.add_argument("file", type=Path, help="Client secrets JSON from the Cloud console")

    add = actions.add_parser("add", help="Authorize and add an account")
    add.add_argument("email")
    add.add_argument(
        "--manual",
        action="store_true",
        help="Paste the redirect URL instead of using a local listener",
    )

    remove = actions.add_parser("remove", help="Remove an account")
    remove.add_argument("email")
    remove.add_argument(
        "--revoke",
        action="store_true",
        help="Also revoke the refresh token at Google",
    )

    actions.add_parser("list", help="List configured accounts")
    return parser


def build_account_parser(identity: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=f"gdcli {identity}", description="Per-account commands")
    commands = parser.add_subparsers(dest="command", required=True, metavar="command")
    commands.add_parser("token", help="Print a valid access token")
    commands.add_parser("about", help="Show Drive user and storage quota")
    return parser


def handle_accounts(manager: AccountManager, args: list[str]) -> int:
    """
    Run an `accounts` action.

    Args:
        manager: Account manager to operate on.
        args: Arguments after the `accounts` keyword.

    Returns:
        Process exit status.
    """
    ns = build_accounts_parser().parse_args(args)

    if ns.action == "list":
        accounts = manager.list_accounts()
        if not accounts:
            print("No accounts configured")
        for account in accounts:
            print(account.identity)
        return EXIT_OK

    if ns.action == "credentials":
        manager.import_credentials_file(ns.file)
        print("Credentials saved")
        return EXIT_OK

    if ns.action == "add":
        manager.add_account(ns.email, manual=ns.manual)
        print(f"Account '{ns.email}' added")
        return EXIT_OK

    if ns.action == "remove":
        result = manager.remove_account(ns.email, revoke=ns.revoke)
        if result.revoke_error:
            print(f"Warning: could not revoke token at Google: {result.revoke_error}")
        print(f"Removed '{ns.email}'" if result.removed else f"Not found: {ns.email}")
        return EXIT_OK

    return EXIT_ERROR


def handle_account_command(manager: AccountManager, identity: str, args: list[str]) -> int:
    """Run a per-account command such as `token` or `about`."""
    ns = build_account_parser(identity).parse_args(args)
    manager.get_account(identity)

    if ns.command == "token":
        print(manager.get_access_token(identity))
        return EXIT_OK

    if ns.command == "about":
        with DriveSession(manager.tokens, identity) as session:
            about = fetch_about(session)
        user = about.get("user", {})
        quota = about.get("storageQuota", {})
        print(f"Name: {user.get('displayName', '-')}")
        print(f"Email: {user.get('emailAddress', '-')}")
        print(f"Usage: {quota.get('usage', '-')} / {quota.get('limit', 'unlimited')} bytes")
        return EXIT_OK

    return EXIT_ERROR


def run(argv: list[str], manager: AccountManager | None = None) -> int:
    """
    Dispatch one gdcli invocation.

    Args:
        argv: Command-line arguments without the program name.
        manager: Account manager; built from gdcli.config when omitted.

    Returns:
        Process exit status.
    """
    if not argv or argv[0] in ("-h", "--help", "help"):
        print(USAGE)
        return EXIT_OK if argv else EXIT_ERROR
    if argv[0] == "--version":
        print(f"gdcli {__version__}")
        return EXIT_OK

    if argv[0] == "config":
        for key, value in config.as_dict().items():
            print(f"{key}={value}")
        return EXIT_OK

    manager = manager or AccountManager.from_config()
    try:
        if argv[0] == "accounts":
            return handle_accounts(manager, argv[1:])
        return handle_account_command(manager, argv[0], argv[1:])
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        _log.info("Command cancelled by user")
        return EXIT_CANCELLED
    except (GdcliError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        _log.error("Command %s failed: %s", argv[:2], exc)
        return EXIT_ERROR


def main() -> None:
    """Console script entry point."""
    configure_logging()
    signal.signal(signal.SIGTERM, _raise_interrupt)
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
