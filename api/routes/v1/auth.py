"""
api/routes/v1/auth.py -- Login and self-service session endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns a bearer token
  GET  /api/v1/auth/me               -- the caller's own account (requires auth)
  PUT  /api/v1/auth/profile          -- update the caller's own details (requires auth)
  POST /api/v1/auth/change-password  -- change the caller's own password (requires auth)
  GET  /api/v1/auth/rights           -- the capability vocabulary (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] Unknown display ids still cost one bcrypt comparison.
  [M5] Cache-Control: no-store on login responses.
  Lock responses distinguish only lock_type "admin" vs "password".

Handlers are plain functions: FastAPI runs them on its worker thread pool, so
bcrypt and datastore calls block only the request that issued them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChange,
    ProfileUpdate,
    RightsResponse,
    UserSummary,
)
from auth.dependencies import get_current_identity
from auth.errors import AccountInactive, BadCredentials, LockError, NotFoundError, ValidationError
from auth.lockout import LockoutPolicy
from auth.models import DEFAULT_RIGHTS, AccountStatus, Capability, Identity, LoginOutcome
from auth.store import AccountStore
from auth.tokens import burn_password_check, hash_password, issue_session_token
from core.config import get_settings

logger = logging.getLogger("adminaccess.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:            public -- login endpoint must be unauthenticated
# - GET  /api/v1/auth/me:               requires auth (get_current_identity)
# - PUT  /api/v1/auth/profile:          requires auth (get_current_identity)
# - POST /api/v1/auth/change-password:  requires auth (get_current_identity)
# - GET  /api/v1/auth/rights:           requires auth (get_current_identity)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with display id and password; return a session token.

    Order of checks:
      1. Unknown display id -> 401 after a dummy bcrypt comparison [C1].
      2. LockoutPolicy: administrator lock, then timed lock, then the
         credential check (which updates the failure counter).
      3. Inactive accounts are refused after a correct password.
    """
    store: AccountStore = request.app.state.account_store
    policy: LockoutPolicy = request.app.state.lockout_policy

    account = store.get_by_display_id(body.user_id)
    if account is None:
        burn_password_check(body.password)
        raise BadCredentials()

    result = policy.check_login(account, body.password)
    if result.outcome is LoginOutcome.LOCKED_ADMIN:
        raise LockError("admin")
    if result.outcome is LoginOutcome.LOCKED_TIMED:
        raise LockError("password")
    if result.outcome is LoginOutcome.REJECTED:
        raise BadCredentials(result.remaining_attempts)

    account = result.account
    if account.status == AccountStatus.INACTIVE.value:
        raise AccountInactive()

    store.record_login(account.ref)
    token = issue_session_token(account)
    logger.info("Login succeeded for %s", account.display_id)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            user=UserSummary(
                user_id=account.display_id,
                full_name=account.full_name,
                email=account.email,
                position=account.position,
                rights=list(account.rights),
                require_password_change=account.must_change_password,
            ),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(identity: Identity = Depends(get_current_identity)) -> AccountResponse:
    """Return the caller's own account as currently stored."""
    return AccountResponse.from_account(identity.account)


@router.put("/auth/profile", response_model=AccountResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_identity),
) -> AccountResponse:
    """Update the caller's own profile details. Rights and status are not editable here."""
    store: AccountStore = request.app.state.account_store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")
    if not store.update_account(identity.ref, **updates):
        raise NotFoundError("Account not found.")
    return AccountResponse.from_account(store.get_by_ref(identity.ref))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Change the caller's own password and clear the must-change flag.

    Sessions already issued stay valid until they expire.
    """
    store: AccountStore = request.app.state.account_store
    updated = store.update_account(
        identity.ref,
        hashed_password=hash_password(body.new_password),
        must_change_password=False,
    )
    if not updated:
        raise NotFoundError("Account not found.")
    logger.info("Password changed for %s", identity.display_id)
    return MessageResponse(message="Password changed successfully")


@router.get("/auth/rights", response_model=RightsResponse)
def list_rights(identity: Identity = Depends(get_current_identity)) -> RightsResponse:
    """Return every capability an account can hold, and the creation default."""
    return RightsResponse(rights=[c.value for c in Capability], default=list(DEFAULT_RIGHTS))
