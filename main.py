#!/usr/bin/env python3
"""
Keystone -- maintenance commands for the auth database.

Usage:
  python main.py purge-sessions
  python main.py revoke-sessions alice@example.com
  python main.py seed-permissions
  python main.py seed-permissions --admin-email alice@example.com

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the auth database. Default sqlite:///keystone.db
  DEBUG          Set to true to run without JWT_SECRET / JWT_REFRESH_SECRET.
"""

import argparse
import logging
import sys

from auth.permissions import ALL_PERMISSIONS, FULL_ACCESS
from auth.roles import RoleStore
from auth.schema import create_db_engine
from auth.sessions import SessionStore
from auth.store import AccountStore
from core.config import get_settings

logger = logging.getLogger("keystone.cli")

ADMIN_ROLE = "admin"


def purge_sessions(sessions: SessionStore) -> int:
    purged = sessions.purge_expired()
    print(f"  Purged {purged} expired session(s).")
    return 0


def revoke_sessions(accounts: AccountStore, sessions: SessionStore, email: str) -> int:
    account = accounts.find_by_email(email)
    if account is None:
        print(f"  [!] No active account with email '{email}'.")
        return 1
    sessions.delete_all_sessions_for_account(account.id)
    print(f"  Revoked all sessions for {email}.")
    return 0


def seed_permissions(roles: RoleStore, accounts: AccountStore, admin_email: str | None) -> int:
    """Insert the permission catalogue and an admin role holding admin:full_access.

    Idempotent: existing permissions and an existing admin role are left alone.
    With --admin-email, that account is given the admin role.
    """
    added = roles.seed_permissions(ALL_PERMISSIONS)
    print(f"  Added {added} permission(s); catalogue has {len(ALL_PERMISSIONS)}.")

    admin = roles.get_role_by_name(ADMIN_ROLE)
    if admin is None:
        admin = roles.create_role(ADMIN_ROLE, "Full access to every resource.", [FULL_ACCESS])
        print(f"  Created role '{ADMIN_ROLE}'.")

    if admin_email:
        account = accounts.find_by_email(admin_email)
        if account is None:
            print(f"  [!] No active account with email '{admin_email}'.")
            return 1
        accounts.assign_role(account.id, admin.id)
        print(f"  Granted '{ADMIN_ROLE}' to {admin_email}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keystone auth database maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("purge-sessions", help="Delete every expired session")

    revoke = sub.add_parser("revoke-sessions", help="Log an account out everywhere")
    revoke.add_argument("email")

    seed = sub.add_parser("seed-permissions", help="Insert the permission catalogue and the admin role")
    seed.add_argument("--admin-email", default=None, help="Account to grant the admin role")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    engine = create_db_engine(get_settings().database_url)
    accounts = AccountStore(engine)
    sessions = SessionStore(engine)
    roles = RoleStore(engine)
    try:
        if args.command == "purge-sessions":
            return purge_sessions(sessions)
        if args.command == "revoke-sessions":
            return revoke_sessions(accounts, sessions, args.email)
        return seed_permissions(roles, accounts, args.admin_email)
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
