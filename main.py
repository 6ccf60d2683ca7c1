#!/usr/bin/env python3
"""
Natours admin CLI -- account management that must not go through the public API.

Self-registration always creates "user" accounts. Guides, lead guides and
admins are created or promoted here, by someone with shell access to the
server and its configuration.

Usage:
  python main.py create-user --name "Ada Admin" --email ada@example.com --role admin
  python main.py set-role --email leo@example.com --role lead-guide
  python main.py set-password --email leo@example.com
  python main.py deactivate --email leo@example.com
  python main.py list-users

Passwords are read interactively (never from argv, which leaks to shell
history and `ps`). Set NATOURS_PASSWORD to supply one non-interactively.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the user database (default: ./natours.db)
  SECRET_KEY    Required unless DEBUG=true (see core/config.py)
"""

import argparse
import getpass
import os
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationFailed
from auth.models import ROLES, User
from auth.store import UserStore
from auth.tokens import BCRYPT_MAX_BYTES, CredentialManager
from core.config import get_settings

_MIN_PASSWORD = 8


def _read_password() -> Optional[str]:
    """Return a confirmed password from NATOURS_PASSWORD or the terminal, or None."""
    env_password = os.environ.get("NATOURS_PASSWORD")
    if env_password:
        password = env_password
    else:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("  [!] Passwords are not the same.")
            return None
    if len(password) < _MIN_PASSWORD:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters.")
        return None
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        print(f"  [!] Password must be at most {BCRYPT_MAX_BYTES} bytes.")
        return None
    return password


def _require_user(store: UserStore, email: str) -> Optional[User]:
    user = store.get_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
    return user


def cmd_create_user(args: argparse.Namespace, store: UserStore, credentials: CredentialManager) -> int:
    password = _read_password()
    if password is None:
        return 1
    user = User(name=args.name, email=args.email, role=args.role, hashed_password=credentials.hash_password(password))
    try:
        store.create_user(user)
    except ValidationFailed as exc:
        print(f"  [!] {exc.message}")
        return 1
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    print(f"  Created {user.role} {user.email} (id={user.id}).")
    return 0


def cmd_set_role(args: argparse.Namespace, store: UserStore, credentials: CredentialManager) -> int:
    user = _require_user(store, args.email)
    if user is None:
        return 1
    user.role = args.role
    store.save_user(user)
    print(f"  {user.email} is now {user.role}.")
    return 0


def cmd_set_password(args: argparse.Namespace, store: UserStore, credentials: CredentialManager) -> int:
    """Replace a password. All of the user's existing sessions stop working."""
    user = _require_user(store, args.email)
    if user is None:
        return 1
    password = _read_password()
    if password is None:
        return 1
    user.hashed_password = credentials.hash_password(password)
    user.password_reset_token = None
    user.password_reset_expires = None
    store.save_user(user)
    print(f"  Password updated for {user.email}; existing sessions revoked.")
    return 0


def cmd_deactivate(args: argparse.Namespace, store: UserStore, credentials: CredentialManager) -> int:
    user = _require_user(store, args.email)
    if user is None:
        return 1
    user.is_active = False
    store.save_user(user, validate=False)
    print(f"  {user.email} deactivated.")
    return 0


def cmd_list_users(args: argparse.Namespace, store: UserStore, credentials: CredentialManager) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    for u in users:
        state = "active" if u.is_active else "inactive"
        print(f"  {u.id:>5}  {u.role:<10}  {state:<8}  {u.email}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="natours-admin",
        description="Manage Natours user accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --name "Ada Admin" --email ada@example.com --role admin
  python main.py set-role --email leo@example.com --role guide
  NATOURS_PASSWORD=... python main.py set-password --email leo@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an account with any role")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--role", choices=ROLES, default="user")
    create.set_defaults(func=cmd_create_user)

    set_role = sub.add_parser("set-role", help="Change an account's role")
    set_role.add_argument("--email", required=True)
    set_role.add_argument("--role", choices=ROLES, required=True)
    set_role.set_defaults(func=cmd_set_role)

    set_password = sub.add_parser("set-password", help="Replace a password and revoke sessions")
    set_password.add_argument("--email", required=True)
    set_password.set_defaults(func=cmd_set_password)

    deactivate = sub.add_parser("deactivate", help="Deactivate an account")
    deactivate.add_argument("--email", required=True)
    deactivate.set_defaults(func=cmd_deactivate)

    list_users = sub.add_parser("list-users", help="List all accounts")
    list_users.set_defaults(func=cmd_list_users)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        return args.func(args, store, CredentialManager.from_settings(settings))
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
