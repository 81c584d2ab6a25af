"""
auth/models.py -- Domain dataclasses and enums for administrative accounts.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
the domain shape; stores, policies and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Capability(str, Enum):
    """The fixed capability vocabulary. Each account carries a subset."""

    RESET_PASSWORD = "reset_password"
    EDIT_RIDER = "edit_rider"
    DELETE_RIDER = "delete_rider"
    ADD_RIDER = "add_rider"
    MANAGE_USERS = "manage_users"
    MANAGE_BOBODASMART = "manage_bobodasmart"
    MANAGE_WEBSITE = "manage_website"
    MANAGE_LEADERSHIP = "manage_leadership"
    MANAGE_DENTAL = "manage_dental"
    VIEW_ONLY = "view_only"


# Granted when an account is created without an explicit rights list.
DEFAULT_RIGHTS: list[str] = [Capability.VIEW_ONLY.value]

# The bootstrap account holds every management capability.
BOOTSTRAP_RIGHTS: list[str] = [c.value for c in Capability if c is not Capability.VIEW_ONLY]


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    # Reported only; derived from lock_state, never stored.
    LOCKED = "locked"


class LockState(str, Enum):
    """Explicit lockout states.

    ADMIN_LOCKED is set and cleared only by an administrator and is not
    time-boxed. TIMED_LOCKED is set by the lockout policy and carries an expiry.
    """

    OPEN = "open"
    ADMIN_LOCKED = "admin_locked"
    TIMED_LOCKED = "timed_locked"


class LoginOutcome(str, Enum):
    ALLOWED = "allowed"
    REJECTED = "rejected"
    LOCKED_ADMIN = "locked_admin"
    LOCKED_TIMED = "locked_timed"


def normalize_rights(rights) -> list[str]:
    """Return rights as plain strings, de-duplicated with first-seen order kept."""
    seen: set[str] = set()
    result: list[str] = []
    for right in rights or []:
        value = right.value if isinstance(right, Capability) else str(right)
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


@dataclass
class Account:
    """One administrator.

    ref is the stable internal reference (uuid hex, never reused). display_id
    is the 5-digit human-facing number handed out by the allocator; it is empty
    until the account has been provisioned.

    status holds only active/inactive. Whether the account is locked is owned
    by lock_state; effective_status folds the two together for display.
    """

    first_name: str
    surname: str
    department: str
    position: str
    email: str
    phone_number: str
    hashed_password: str
    ref: str = ""
    display_id: str = ""
    middle_name: str = ""
    location: str = "Dar es Salaam, Tanzania"
    rights: list[str] = field(default_factory=lambda: list(DEFAULT_RIGHTS))
    status: str = AccountStatus.ACTIVE.value
    lock_state: str = LockState.OPEN.value
    failed_attempts: int = 0
    lock_expires_at: str | None = None  # ISO 8601, TIMED_LOCKED only
    last_login: str | None = None
    must_change_password: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def full_name(self) -> str:
        names = [self.first_name, self.middle_name, self.surname]
        return " ".join(n for n in names if n)

    @property
    def effective_status(self) -> str:
        if self.lock_state != LockState.OPEN.value:
            return AccountStatus.LOCKED.value
        return self.status


@dataclass(frozen=True)
class Identity:
    """A verified session resolved to a live account.

    rights always comes from the freshly loaded account record. token_rights
    is the snapshot embedded at issuance and is kept for diagnostics only.
    """

    ref: str
    display_id: str
    rights: frozenset[str]
    account: Account
    token_rights: tuple[str, ...] = ()


@dataclass(frozen=True)
class LoginResult:
    """Outcome of LockoutPolicy.check_login()."""

    outcome: LoginOutcome
    account: Account
    remaining_attempts: int = 0

    @property
    def allowed(self) -> bool:
        return self.outcome is LoginOutcome.ALLOWED
