#!/usr/bin/env python3
"""
SIGL backend -- administration commands.

Usage:
  python main.py create-admin --email admin@example.org --username admin
  ADMIN_PASSWORD='Str0ng!Pass' python main.py create-admin --email admin@example.org
  python main.py stats
  python main.py --db sqlite:///./other.db stats

create-admin seeds the first ADMIN account through the same registration
path the API uses, so the password policy and the user/credential
rollback apply. It is idempotent: if the email is already registered nothing
is changed. The password is read from ADMIN_PASSWORD or prompted for; it
is never taken from the command line, where the process list and shell
history would keep it.

Environment variables:
  DATABASE_URL     SQLAlchemy URL. Defaults to sigl_auth.db next to the package.
  ADMIN_PASSWORD   Password for create-admin. Prompted for when unset.
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from auth.errors import AuthError
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.registration import RegistrationCoordinator
from auth.store import CredentialStore
from core.config import get_settings
from core.database import open_engine
from profiles.store import UserStore


def _create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = open_engine(args.db or settings.database_url)
    users = UserStore(engine)

    if users.get_by_email(args.email) is not None:
        print(f"  An account for {args.email.strip().lower()} already exists. Nothing to do.")
        return 0

    password = os.environ.get("ADMIN_PASSWORD")
    if not password:
        password = getpass.getpass("  Admin password: ")

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    registration = RegistrationCoordinator(users, CredentialStore(engine), hasher)
    try:
        user = registration.register(
            username=args.username,
            email=args.email,
            password=password,
            role=Role.ADMIN,
            first_name=args.first_name,
            last_name=args.last_name,
        )
    except AuthError as exc:
        print(f"  [!] {exc.code}: {exc.message}")
        return 1

    print(f"  Created ADMIN account #{user.id} ({user.username}, {user.email}).")
    return 0


def _stats(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = open_engine(args.db or settings.database_url)
    stats = CredentialStore(engine).stats()
    print(f"  Users:                        {UserStore(engine).count_users()}")
    print(f"  Active accounts:              {stats['total_active_accounts']}")
    print(f"  Inactive accounts:            {stats['total_inactive_accounts']}")
    print(f"  Accounts with failed logins:  {stats['accounts_with_failed_attempts']}")
    print(f"  Locked accounts:              {stats['locked_accounts']}")
    print(f"  Accounts with a session:      {stats['accounts_with_refresh_tokens']}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sigl",
        description="Administration commands for the SIGL authentication backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.org --username admin
  ADMIN_PASSWORD='Str0ng!Pass' python main.py create-admin --email admin@example.org --username admin
  python main.py stats
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default="",
        help="SQLAlchemy database URL (overrides DATABASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    admin = subparsers.add_parser("create-admin", help="Create the initial ADMIN account")
    admin.add_argument("--email", required=True, help="Admin email address")
    admin.add_argument("--username", default="admin", help="Admin username (default: admin)")
    admin.add_argument("--first-name", dest="first_name", default="System")
    admin.add_argument("--last-name", dest="last_name", default="Administrator")
    admin.set_defaults(handler=_create_admin)

    stats = subparsers.add_parser("stats", help="Print credential statistics")
    stats.set_defaults(handler=_stats)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
