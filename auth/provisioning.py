"""
auth/provisioning.py -- Account creation, deletion and bootstrap seeding.

provision_account() joins the IdentifierAllocator to the account insert. Each
allocation reserves a distinct counter value, so concurrent creations never
compute the same display id. An id written outside the allocator can still
collide; the UNIQUE constraint on display_id rejects the insert, which is
retried exactly once with a fresh allocation. Any other duplicate (email,
phone number) releases the reserved id and goes straight back to the caller.

remove_account() deletes an account and hands its display id back to the
allocator, so deleting the newest account makes its id available again.

ensure_bootstrap_account() creates the single account that holds the floor
display id. It runs at application startup and from the operator CLI; there
is no HTTP route that can create, relocate or delete it.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets

from auth.allocator import IdentifierAllocator, format_display_id
from auth.errors import AllocationError, DuplicateError
from auth.models import BOOTSTRAP_RIGHTS, Account
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import Settings

logger = logging.getLogger("adminaccess.auth.provisioning")


def provision_account(store: AccountStore, allocator: IdentifierAllocator, account: Account) -> Account:
    """Allocate a display id for account, insert it, and return the stored record.

    Raises:
        DuplicateError:  email or phone number already in use.
        AllocationError: the allocated id collided twice, or the datastore
                         failed while scanning.
    """
    for attempt in (1, 2):
        account.display_id = allocator.allocate()
        try:
            ref = store.insert_account(account)
        except DuplicateError as exc:
            if exc.field != "display_id":
                allocator.release(account.display_id)
                raise
            logger.warning("Display id %s already taken (attempt %d)", account.display_id, attempt)
            continue
        created = store.get_by_ref(ref)
        logger.info("Created account %s", created.display_id)
        return created
    raise AllocationError("Could not allocate a unique display identifier.")


def remove_account(store: AccountStore, allocator: IdentifierAllocator, account: Account) -> bool:
    """Delete account and release its display id. Returns False if it was already gone."""
    if not store.delete_account(account.ref):
        return False
    allocator.release(account.display_id)
    logger.info("Deleted account %s", account.display_id)
    return True


def ensure_bootstrap_account(store: AccountStore, settings: Settings) -> Account:
    """Create the bootstrap account if it does not exist, and return it.

    When BOOTSTRAP_PASSWORD is unset a random password is generated, logged
    once at WARNING level, and the account is flagged to change it.
    """
    display_id = format_display_id(settings.id_floor)
    existing = store.get_by_display_id(display_id)
    if existing is not None:
        logger.info("Bootstrap account %s already exists", display_id)
        return existing

    password = settings.bootstrap_password
    generated = not password
    if generated:
        password = secrets.token_urlsafe(12)

    account = Account(
        display_id=display_id,
        first_name="System",
        surname="Administrator",
        middle_name="",
        department="ICT",
        position="Administrator",
        email="admin@localhost",
        phone_number="0000000000",
        hashed_password=hash_password(password),
        rights=list(BOOTSTRAP_RIGHTS),
        must_change_password=generated,
    )
    try:
        ref = store.insert_account(account)
    except DuplicateError as exc:
        if exc.field != "display_id":
            raise
        # Another instance seeded it first.
        return store.get_by_display_id(display_id)

    if generated:
        logger.warning("Bootstrap account %s created with generated password: %s", display_id, password)
    else:
        logger.info("Bootstrap account %s created", display_id)
    return store.get_by_ref(ref)
