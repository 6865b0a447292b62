#!/usr/bin/env python3
"""
Benefits auth -- operator commands for the auth store.

Usage:
  python main.py create-user --email ann@example.com --name "Ann Lee"
  python main.py create-user --email root@example.com --name Root --role admin --role super-admin
  python main.py grant-role --user-id <ID> --role admin
  python main.py revoke-role --user-id <ID> --role admin
  python main.py purge-expired

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL of the auth store (default: SQLite file in auth/)
  SECRET_KEY    Required unless DEBUG=true
"""

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User, utcnow
from auth.store import UserStore
from core.config import get_settings

_ROLE_NAMES = {
    "user": Role.USER,
    "admin": Role.ADMIN,
    "super-admin": Role.SUPER_ADMIN,
}


def _role(value: str) -> Role:
    try:
        return _ROLE_NAMES[value.lower()]
    except KeyError:
        raise argparse.ArgumentTypeError(f"unknown role '{value}' (choose from {', '.join(_ROLE_NAMES)})") from None


def create_user(store: UserStore, email: str, name: str, roles: list[Role]) -> Optional[str]:
    """Insert a user. Returns the new id, or None if the email is taken."""
    try:
        return store.create_user(User(email=email, name=name, roles=set(roles or [Role.USER])))
    except IntegrityError:
        print(f"  [!] A user with email '{email}' already exists.")
        return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="benefits-auth",
        description="Operator commands for the benefits directory auth store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email ann@example.com --name "Ann Lee"
  python main.py grant-role --user-id AbCdEfGhIjKlMnOpQrSt --role admin
  DATABASE_URL=sqlite:////var/lib/benefits/auth.db python main.py purge-expired
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Register a user and print the new id")
    create.add_argument("--email", required=True, help="Login email (stored lower-cased)")
    create.add_argument("--name", required=True, help="Display name used in login emails")
    create.add_argument(
        "--role",
        dest="roles",
        action="append",
        type=_role,
        default=[],
        metavar="ROLE",
        help="user, admin or super-admin. Repeatable. Default: user",
    )

    for command, verb in (("grant-role", "Grant"), ("revoke-role", "Revoke")):
        p = sub.add_parser(command, help=f"{verb} a role")
        p.add_argument("--user-id", required=True, help="20-character user id")
        p.add_argument("--role", required=True, type=_role, metavar="ROLE", help="user, admin or super-admin")

    sub.add_parser("purge-expired", help="Delete refresh tokens and login codes past their TTL")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        if args.command == "create-user":
            user_id = create_user(store, args.email, args.name, args.roles)
            if user_id is None:
                return 1
            print(user_id)

        elif args.command in ("grant-role", "revoke-role"):
            if store.get_by_id(args.user_id) is None:
                print(f"  [!] No user with id '{args.user_id}'.")
                return 1
            if args.command == "grant-role":
                changed = store.add_role(args.user_id, args.role)
            else:
                changed = store.remove_role(args.user_id, args.role)
            state = "updated" if changed else "unchanged"
            print(f"  {args.user_id}: {args.role.value} {state}.")

        elif args.command == "purge-expired":
            tokens, codes = store.purge_expired(utcnow())
            print(f"  Purged {tokens} refresh token(s) and {codes} login code(s).")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
