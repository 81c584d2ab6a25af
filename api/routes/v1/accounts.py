"""
api/routes/v1/accounts.py -- Account administration endpoints.

Routes:
  POST   /api/v1/users                           -- create an account (manage_users)
  GET    /api/v1/users                           -- list accounts (manage_users)
  GET    /api/v1/users/search/{user_id}          -- account with lockout detail (manage_users)
  GET    /api/v1/users/{user_id}                 -- one account (any session)
  PUT    /api/v1/users/{user_id}                 -- update details/status/rights (manage_users);
                                                   a password also needs reset_password
  POST   /api/v1/users/{user_id}/reset-password  -- set a new password (reset_password)
  POST   /api/v1/users/{user_id}/lock            -- administrator lock (manage_users)
  POST   /api/v1/users/{user_id}/unlock          -- administrator unlock (manage_users)
  DELETE /api/v1/users/{user_id}                 -- delete an account (manage_users)

The bootstrap account (the floor display id) is protected: no route can
delete it, relocate it, change its status, reset its password, or change its
lock state. Recovery goes through the operator CLI (`python main.py unlock`).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request

from api.models import (
    DISPLAY_ID_PATTERN,
    AccountActionResponse,
    AccountCreate,
    AccountLockView,
    AccountResponse,
    AccountUpdate,
    LockActionEnum,
    MessageResponse,
    PasswordChange,
    StatusEnum,
)
from auth.allocator import IdentifierAllocator
from auth.dependencies import get_current_identity, require_rights
from auth.errors import NotFoundError, ProtectedAccountError, ValidationError
from auth.lockout import LockoutPolicy
from auth.models import DEFAULT_RIGHTS, Account, Capability, Identity
from auth.provisioning import provision_account, remove_account
from auth.rights import enforce
from auth.store import AccountStore
from auth.tokens import hash_password

logger = logging.getLogger("adminaccess.api.accounts")

# Auth policy:
# - GET /api/v1/users/{user_id}:              requires auth (get_current_identity)
# - POST .../reset-password:                  requires reset_password
# - PUT /api/v1/users/{user_id} with password: manage_users and reset_password
# - everything else:                          requires manage_users
router = APIRouter()

_manage_users = require_rights(Capability.MANAGE_USERS)
_reset_password = require_rights(Capability.RESET_PASSWORD)

UserId = Annotated[str, Path(pattern=DISPLAY_ID_PATTERN, description="Five-digit display identifier.")]


def _load(store: AccountStore, user_id: str) -> Account:
    account = store.get_by_display_id(user_id)
    if account is None:
        raise NotFoundError("User not found.")
    return account


def _is_bootstrap(request: Request, account: Account) -> bool:
    allocator: IdentifierAllocator = request.app.state.allocator
    return account.display_id == allocator.floor


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


@router.post("/users", response_model=AccountResponse, status_code=201)
def create_account(
    request: Request,
    body: AccountCreate,
    identity: Identity = Depends(_manage_users),
) -> AccountResponse:
    """Create an account with a freshly allocated display id.

    Rights default to view_only when omitted. Duplicate email or phone number
    answers 400 naming the field.
    """
    store: AccountStore = request.app.state.account_store
    allocator: IdentifierAllocator = request.app.state.allocator

    if body.user_id is not None and body.user_id == allocator.floor:
        raise ValidationError("The bootstrap user ID cannot be assigned.", code="bootstrap_exists")

    fields = body.model_dump(exclude_none=True, exclude={"password", "rights", "user_id"})
    account = Account(
        **fields,
        hashed_password=hash_password(body.password),
        rights=list(body.rights) if body.rights is not None else list(DEFAULT_RIGHTS),
    )
    created = provision_account(store, allocator, account)
    logger.info("Account %s created by %s", created.display_id, identity.display_id)
    return AccountResponse.from_account(created)


@router.get("/users", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    identity: Identity = Depends(_manage_users),
) -> list[AccountResponse]:
    store: AccountStore = request.app.state.account_store
    return [AccountResponse.from_account(a) for a in store.list_accounts()]


@router.get("/users/search/{user_id}", response_model=AccountLockView)
def search_account(
    request: Request,
    user_id: UserId,
    identity: Identity = Depends(_manage_users),
) -> AccountLockView:
    """Look up one account including its lock state and failure counter."""
    store: AccountStore = request.app.state.account_store
    return AccountLockView.from_account(_load(store, user_id))


@router.get("/users/{user_id}", response_model=AccountResponse)
def get_account(
    request: Request,
    user_id: UserId,
    identity: Identity = Depends(get_current_identity),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    return AccountResponse.from_account(_load(store, user_id))


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}", response_model=AccountLockView)
def update_account(
    request: Request,
    body: AccountUpdate,
    user_id: UserId,
    identity: Identity = Depends(_manage_users),
) -> AccountLockView:
    """Update an account's details, status, rights or password.

    Display ids are allocated, never reassigned. Status is limited to
    active/inactive; lock state has its own endpoints. A password is treated
    as an administrative reset: it needs reset_password as well, is refused
    on the bootstrap account, forces a change at next login and clears locks.
    """
    store: AccountStore = request.app.state.account_store
    policy: LockoutPolicy = request.app.state.lockout_policy
    target = _load(store, user_id)
    bootstrap = _is_bootstrap(request, target)

    if body.user_id is not None and body.user_id != target.display_id:
        if bootstrap:
            raise ProtectedAccountError("Cannot change the bootstrap account's user ID.")
        raise ValidationError("User IDs are allocated and cannot be changed.", code="immutable_user_id")
    if body.password:
        enforce(identity, (Capability.RESET_PASSWORD,))
        if bootstrap:
            raise ProtectedAccountError("Cannot reset the bootstrap account's password.")

    updates = body.model_dump(exclude_none=True, exclude={"user_id", "password", "status", "rights"})
    if body.status is not None and body.status.value != target.status:
        if bootstrap:
            raise ProtectedAccountError("Cannot change the bootstrap account's status.")
        if target.ref == identity.ref and body.status is StatusEnum.inactive:
            raise ProtectedAccountError("You cannot deactivate your own account.", code="self_deactivation")
        updates["status"] = body.status.value
    if body.rights is not None:
        updates["rights"] = list(body.rights)
    if body.password:
        updates["hashed_password"] = hash_password(body.password)
        updates["must_change_password"] = True
    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")

    if not store.update_account(target.ref, **updates):
        raise NotFoundError("User not found.")
    if body.password:
        policy.clear(target)
    logger.info("Account %s updated by %s (%s)", target.display_id, identity.display_id, ", ".join(sorted(updates)))
    return AccountLockView.from_account(store.get_by_ref(target.ref))


# ---------------------------------------------------------------------------
# Password reset and lock control
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/reset-password", response_model=AccountActionResponse)
def reset_password(
    request: Request,
    body: PasswordChange,
    user_id: UserId,
    identity: Identity = Depends(_reset_password),
) -> AccountActionResponse:
    """Set a new password, require a change at next login, and clear any lock."""
    store: AccountStore = request.app.state.account_store
    policy: LockoutPolicy = request.app.state.lockout_policy
    target = _load(store, user_id)
    if _is_bootstrap(request, target):
        raise ProtectedAccountError("Cannot reset the bootstrap account's password.")

    store.update_account(
        target.ref,
        hashed_password=hash_password(body.new_password),
        must_change_password=True,
    )
    policy.clear(target)
    logger.info("Password for %s reset by %s", target.display_id, identity.display_id)
    return AccountActionResponse(
        message="Password reset successfully",
        user=AccountLockView.from_account(store.get_by_ref(target.ref)),
    )


@router.post("/users/{user_id}/{action}", response_model=AccountActionResponse)
def lock_account(
    request: Request,
    action: LockActionEnum,
    user_id: UserId,
    identity: Identity = Depends(_manage_users),
) -> AccountActionResponse:
    """Apply or lift an administrator lock. Unlock also clears a timed lock."""
    store: AccountStore = request.app.state.account_store
    policy: LockoutPolicy = request.app.state.lockout_policy
    target = _load(store, user_id)

    if target.ref == identity.ref:
        raise ProtectedAccountError(f"You cannot {action.value} your own account.", code="self_lock")
    if _is_bootstrap(request, target):
        raise ProtectedAccountError("Cannot change the bootstrap account's lock state.")

    if action is LockActionEnum.lock:
        policy.admin_lock(target)
    else:
        policy.admin_unlock(target)
    logger.info("Account %s %sed by %s", target.display_id, action.value, identity.display_id)
    return AccountActionResponse(
        message=f"User {action.value}ed successfully",
        user=AccountLockView.from_account(store.get_by_ref(target.ref)),
    )


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_account(
    request: Request,
    user_id: UserId,
    identity: Identity = Depends(_manage_users),
) -> MessageResponse:
    """Delete an account. The newest account's display id becomes available again."""
    store: AccountStore = request.app.state.account_store
    allocator: IdentifierAllocator = request.app.state.allocator
    target = _load(store, user_id)
    if _is_bootstrap(request, target):
        raise ProtectedAccountError("Cannot delete the bootstrap account.")
    if not remove_account(store, allocator, target):
        raise NotFoundError("User not found.")
    logger.info("Account %s deleted by %s", target.display_id, identity.display_id)
    return MessageResponse(message="User deleted successfully")
