#!/usr/bin/env python3
"""
Market auth -- administrative command line.

Usage:
  python main.py users new-admin
  python main.py users set-password USER_ID
  python main.py users set-password someone@example.com
  python main.py tasks cleanup-sessions

Passwords are always read interactively and never accepted as arguments, so
they stay out of shell history and process listings.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite file next to this script)
  BCRYPT_ROUNDS  bcrypt cost factor for new hashes (default: 12)
"""

import argparse
import getpass
import logging
from typing import Optional

from auth.accounts import Accounts, NewUserParams
from auth.credentials import CredentialManager
from auth.errors import AuthError, UserNotFoundError, ValidationError
from auth.models import User
from auth.sessions import SessionStore
from auth.store import AuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("market.cli")


class _Services:
    """The store plus the services the commands need, closed together."""

    def __init__(self, settings: Settings) -> None:
        self.store = AuthStore(settings.database_url, settings.database_timeout_seconds)
        self.credentials = CredentialManager(self.store, rounds=settings.bcrypt_rounds)
        self.accounts = Accounts(self.store, self.credentials)
        self.sessions = SessionStore(self.store, settings)

    def close(self) -> None:
        self.sessions.shutdown()
        self.store.close()


def _build_services(settings: Settings) -> _Services:
    return _Services(settings)


def _read_new_password() -> Optional[str]:
    """Prompt twice for a password. Returns None if the two entries differ."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    return password


def _denylist(user: User) -> tuple[str, ...]:
    return (user.name, user.email, user.email.partition("@")[0])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_new_admin(services: _Services, args: argparse.Namespace) -> int:
    name = input("  Name: ")
    email = input("  Email: ")
    password = _read_new_password()
    if password is None:
        return 1
    try:
        user_id = services.accounts.new_admin(NewUserParams(name=name, email=email), password)
    except ValidationError as exc:
        print(f"  [!] {exc}")
        return 1
    print(f"  Admin account created: {user_id}")
    return 0


def cmd_set_password(services: _Services, args: argparse.Namespace) -> int:
    try:
        if "@" in args.user:
            user = services.accounts.get_user_by_email(args.user)
        else:
            user = services.accounts.get_user_by_id(args.user)
    except UserNotFoundError:
        print(f"  [!] No user matches '{args.user}'.")
        return 1

    answer = input(f"  Set a new password for {user.name} <{user.email}> ({user.user_id})? [yes/no]: ")
    if answer.strip().lower() != "yes":
        print("  Aborted.")
        return 1

    password = _read_new_password()
    if password is None:
        return 1
    try:
        services.credentials.set_credentials(user.user_id, password, *_denylist(user))
    except ValidationError as exc:
        print(f"  [!] {exc}")
        return 1
    closed = services.sessions.close_user(user.user_id)
    logger.info("password reset for user %s from the command line", user.user_id)
    print(f"  Password updated. {closed} active session(s) closed.")
    return 0


def cmd_cleanup_sessions(services: _Services, args: argparse.Namespace) -> int:
    closed = services.sessions.close_expired()
    print(f"  {closed} expired session(s) closed.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market-auth",
        description="Administrative tasks for Market accounts and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py users new-admin
  python main.py users set-password 5Kd3NBUAdUn
  python main.py users set-password someone@example.com
  python main.py tasks cleanup-sessions
        """,
    )
    groups = parser.add_subparsers(dest="group", metavar="GROUP")

    users = groups.add_parser("users", help="Manage user accounts")
    users_cmds = users.add_subparsers(dest="command", metavar="COMMAND")
    new_admin = users_cmds.add_parser("new-admin", help="Create an admin account (prompts for details)")
    new_admin.set_defaults(func=cmd_new_admin)
    set_password = users_cmds.add_parser(
        "set-password",
        help="Replace a user's password and close all of the user's sessions",
    )
    set_password.add_argument("user", metavar="USER", help="User ID or email address")
    set_password.set_defaults(func=cmd_set_password)

    tasks = groups.add_parser("tasks", help="Maintenance tasks")
    tasks_cmds = tasks.add_subparsers(dest="command", metavar="COMMAND")
    cleanup = tasks_cmds.add_parser("cleanup-sessions", help="Mark every session past its expiration as expired")
    cleanup.set_defaults(func=cmd_cleanup_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    services = _build_services(settings)
    try:
        return args.func(services, args)
    except AuthError as exc:
        logger.error("%s failed: %s", args.command, exc, exc_info=exc.__cause__)
        print(f"  [!] {exc}")
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    raise SystemExit(main())
