#!/usr/bin/env python3
"""
Admin Access -- operator command line.

Works directly against the datastore named by DATABASE_URL, without the HTTP
API. This is the only way to change the bootstrap account's lock state.

Usage:
  python main.py init
  python main.py create-admin --first-name Asha --surname Mollel \\
      --email asha@example.com --phone 0712000000 --department ICT --position Lead
  python main.py list
  python main.py unlock 10000

Environment variables:
  DATABASE_URL        SQLAlchemy URL of the account datastore.
  BOOTSTRAP_PASSWORD  Password for the bootstrap account created by `init`.
                      When unset one is generated and printed to the log.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.allocator import IdentifierAllocator
from auth.errors import AccessError
from auth.lockout import LockoutPolicy
from auth.models import BOOTSTRAP_RIGHTS, Account
from auth.provisioning import ensure_bootstrap_account, provision_account
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import Settings, get_settings

logger = logging.getLogger("adminaccess.cli")


def _open_store(settings: Settings) -> AccountStore:
    return AccountStore(settings.database_url, connect_timeout=settings.db_connect_timeout)


def _cmd_init(store: AccountStore, settings: Settings, args: argparse.Namespace) -> int:
    account = ensure_bootstrap_account(store, settings)
    print(f"Bootstrap account: {account.display_id} ({account.full_name})")
    return 0


def _cmd_create_admin(store: AccountStore, settings: Settings, args: argparse.Namespace) -> int:
    """Create an account holding every administrative capability."""
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    account = Account(
        first_name=args.first_name,
        surname=args.surname,
        middle_name=args.middle_name,
        department=args.department,
        position=args.position,
        email=args.email,
        phone_number=args.phone,
        hashed_password=hash_password(password),
        rights=list(BOOTSTRAP_RIGHTS),
    )
    allocator = IdentifierAllocator(store, floor=settings.id_floor)
    created = provision_account(store, allocator, account)
    print(f"Created {created.display_id} ({created.full_name})")
    return 0


def _cmd_list(store: AccountStore, settings: Settings, args: argparse.Namespace) -> int:
    accounts = store.list_accounts()
    if not accounts:
        print("No accounts.")
        return 0
    print(f"{'USER ID':<8} {'NAME':<32} {'STATUS':<9} {'LOCK':<13} RIGHTS")
    for a in accounts:
        print(f"{a.display_id:<8} {a.full_name[:32]:<32} {a.effective_status:<9} {a.lock_state:<13} {','.join(a.rights)}")
    return 0


def _cmd_unlock(store: AccountStore, settings: Settings, args: argparse.Namespace) -> int:
    """Clear every lock on an account, bootstrap included."""
    account = store.get_by_display_id(args.user_id)
    if account is None:
        print(f"  [!] No account with user ID {args.user_id}.")
        return 1
    policy = LockoutPolicy(store, threshold=settings.lockout_threshold, lock_minutes=settings.lockout_minutes)
    policy.admin_unlock(account)
    print(f"Unlocked {account.display_id}")
    return 0


_COMMANDS = {
    "init": _cmd_init,
    "create-admin": _cmd_create_admin,
    "list": _cmd_list,
    "unlock": _cmd_unlock,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Admin Access -- operator commands for the account datastore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init", help="Create tables and the bootstrap account if missing")

    create = sub.add_parser("create-admin", help="Create an account with every administrative right")
    create.add_argument("--first-name", required=True)
    create.add_argument("--surname", required=True)
    create.add_argument("--middle-name", default="")
    create.add_argument("--department", default="ICT")
    create.add_argument("--position", default="Administrator")
    create.add_argument("--email", required=True)
    create.add_argument("--phone", required=True, help="Phone number (must be unique)")
    create.add_argument("--password", default=None, help="Prompted for when omitted")

    sub.add_parser("list", help="List every account with its status and lock state")

    unlock = sub.add_parser("unlock", help="Clear administrator and timed locks on an account")
    unlock.add_argument("user_id", metavar="USER_ID", help="Five-digit display identifier")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    settings = get_settings()
    store = _open_store(settings)
    try:
        return _COMMANDS[args.command](store, settings, args)
    except AccessError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
