#!/usr/bin/env python3
"""
Larek auth -- management CLI.

Account management lives outside the HTTP API; this script is how operators
create accounts, grant or remove roles, and clear sessions.

Usage:
  python main.py create-user admin@example.com --name Admin --role admin
  python main.py set-roles admin@example.com customer admin
  python main.py revoke-sessions admin@example.com
  python main.py purge-sessions

The password for create-user is read from --password or prompted for.

Environment variables (see core/config.py):
  DATABASE_URL            SQLAlchemy URL of the auth database.
  SESSION_DIGEST_SECRET   Needed to open the session registry.
  DEBUG=true              Allows running without secrets (development only).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.credentials import hash_password
from auth.models import Role, UserAccount
from auth.sessions import SessionRegistry
from auth.store import UserStore, create_store_engine
from core.config import get_settings

_ROLE_CHOICES = [r.value for r in Role]


def _open_stores(db_url: Optional[str]) -> tuple[UserStore, SessionRegistry]:
    settings = get_settings()
    engine = create_store_engine(db_url or settings.database_url)
    return UserStore(engine=engine), SessionRegistry(engine, digest_secret=settings.session_digest_secret)


def _cmd_create_user(args, users: UserStore, registry: SessionRegistry) -> int:
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    roles = set(args.role or [Role.customer.value])
    account = UserAccount(
        email=args.email,
        password_hash=hash_password(password, get_settings().bcrypt_rounds),
        roles=roles,
        display_name=args.name or "",
    )
    try:
        user_id = users.create_user(account)
    except IntegrityError:
        print(f"  [!] An account for '{args.email}' already exists.")
        return 1
    print(f"  Created user {user_id} ({', '.join(sorted(roles))})")
    return 0


def _cmd_set_roles(args, users: UserStore, registry: SessionRegistry) -> int:
    account = users.get_by_email(args.email)
    if account is None:
        print(f"  [!] No account for '{args.email}'.")
        return 1
    unknown = set(args.roles) - set(_ROLE_CHOICES)
    if unknown:
        print(f"  [!] Unknown role(s): {', '.join(sorted(unknown))}. Expected: {', '.join(_ROLE_CHOICES)}")
        return 1
    users.set_roles(account.id, args.roles)
    print(f"  Roles for user {account.id}: {', '.join(sorted(set(args.roles))) or '(none)'}")
    return 0


def _cmd_revoke_sessions(args, users: UserStore, registry: SessionRegistry) -> int:
    account = users.get_by_email(args.email)
    if account is None:
        print(f"  [!] No account for '{args.email}'.")
        return 1
    removed = registry.revoke_all(account.id)
    print(f"  Revoked {removed} session(s) for user {account.id}")
    return 0


def _cmd_purge_sessions(args, users: UserStore, registry: SessionRegistry) -> int:
    removed = registry.purge_expired()
    print(f"  Purged {removed} expired session(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Larek auth -- account and session management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--db-url", metavar="URL", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create an account")
    p.add_argument("email")
    p.add_argument("--password", help="Password (prompted for if omitted)")
    p.add_argument("--name", help="Display name")
    p.add_argument("--role", action="append", choices=_ROLE_CHOICES, help="Role to grant (repeatable)")
    p.set_defaults(func=_cmd_create_user)

    p = sub.add_parser("set-roles", help="Replace an account's roles (no roles = strip all)")
    p.add_argument("email")
    p.add_argument("roles", nargs="*", metavar="ROLE", help=f"One of: {', '.join(_ROLE_CHOICES)}")
    p.set_defaults(func=_cmd_set_roles)

    p = sub.add_parser("revoke-sessions", help="Log an account out everywhere")
    p.add_argument("email")
    p.set_defaults(func=_cmd_revoke_sessions)

    p = sub.add_parser("purge-sessions", help="Delete expired session rows")
    p.set_defaults(func=_cmd_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    users, registry = _open_stores(args.db_url)
    try:
        return args.func(args, users, registry)
    finally:
        users.close()


if __name__ == "__main__":
    sys.exit(main())
