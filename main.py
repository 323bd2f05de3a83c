#!/usr/bin/env python3
"""
PortalAuth -- operator commands for the credential and session store.

Usage:
  python main.py create-user alice
  python main.py create-user alice --email alice@example.com
  python main.py request-reset alice@example.com
  python main.py purge-sessions

All commands read the same configuration as the API (AUTH_DB_URL,
PASSWORD_HASH_SCHEME, MAIL_BACKEND, ...) through core.config.get_settings().
Passwords are read from an interactive prompt, never from argv.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.hashing import PASSWORD_MAX_BYTES, fits_bcrypt, get_hasher
from auth.notifier import build_notifier
from auth.reset import PasswordResetCoordinator
from auth.service import Authenticator
from auth.sessions import SqlSessionStore
from auth.store import UserStore
from core.config import get_settings

PASSWORD_MIN = 6
PASSWORD_MAX = 72


def _prompt_password() -> Optional[str]:
    """Prompt twice for a password. Returns None when the entries are unusable."""
    password = getpass.getpass("Password: ")
    if not PASSWORD_MIN <= len(password) <= PASSWORD_MAX:
        print(f"  [!] Password must be {PASSWORD_MIN}-{PASSWORD_MAX} characters.")
        return None
    if not fits_bcrypt(password):
        print(f"  [!] Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded.")
        return None
    if getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def cmd_create_user(args: argparse.Namespace, users: UserStore, sessions: SqlSessionStore) -> int:
    password = _prompt_password()
    if password is None:
        return 1
    authenticator = Authenticator(users, sessions, get_hasher(get_settings().password_hash_scheme))
    result = authenticator.register(args.username.strip(), password, email=args.email)
    # The CLI has no use for the session register() opened.
    authenticator.logout(result.session_id)
    print(f"  Created user '{result.user.username}' (id={result.user.id}).")
    return 0


def cmd_request_reset(args: argparse.Namespace, users: UserStore, sessions: SqlSessionStore) -> int:
    settings = get_settings()
    coordinator = PasswordResetCoordinator(
        users,
        build_notifier(settings),
        get_hasher(settings.password_hash_scheme),
        base_url=settings.app_base_url,
        sessions=sessions,
        token_ttl_seconds=settings.reset_token_ttl_seconds,
    )
    coordinator.request_reset(args.email)
    print("  If that address is registered, a reset link has been sent.")
    return 0


def cmd_purge_sessions(args: argparse.Namespace, users: UserStore, sessions: SqlSessionStore) -> int:
    removed = sessions.purge_expired()
    print(f"  Removed {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portalauth",
        description="PortalAuth operator commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a password account (password is prompted)")
    create.add_argument("username", help="Login name, 3-50 characters")
    create.add_argument("--email", default=None, help="Address used for password reset")
    create.set_defaults(func=cmd_create_user)

    reset = sub.add_parser("request-reset", help="Issue and mail a password reset link")
    reset.add_argument("email", help="Address of the account to reset")
    reset.set_defaults(func=cmd_request_reset)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions now")
    purge.set_defaults(func=cmd_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "create-user" and not 3 <= len(args.username.strip()) <= 50:
        print("  [!] Username must be 3-50 characters.")
        return 1

    settings = get_settings()
    users = UserStore(settings.auth_db_url)
    sessions = SqlSessionStore(engine=users.engine, ttl_seconds=settings.session_ttl_seconds)
    try:
        return args.func(args, users, sessions)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        sessions.close()
        users.close()


if __name__ == "__main__":
    sys.exit(main())
