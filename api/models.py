"""
API request and response models for the admin access REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, Capability, LockState, normalize_rights

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DISPLAY_ID_PATTERN = r"^\d{5}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"

# bcrypt truncates at 72 bytes.
_PASSWORD_MAX = 72
_PASSWORD_MIN = 6


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StatusEnum(str, Enum):
    """Administratively settable statuses. "locked" is derived, never set."""

    active = "active"
    inactive = "inactive"


class LockActionEnum(str, Enum):
    lock = "lock"
    unlock = "unlock"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(pattern=DISPLAY_ID_PATTERN, description="Five-digit display identifier.")
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/users.

    Display identifiers are always allocated by the server. user_id exists only
    so an explicit attempt to recreate the bootstrap identifier can be refused.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=50)
    surname: str = Field(min_length=1, max_length=50)
    middle_name: str = Field(default="", max_length=50)
    department: str = Field(min_length=1, max_length=100)
    position: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    phone_number: str = Field(min_length=1, max_length=20)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    location: Optional[str] = Field(default=None, max_length=100)
    rights: Optional[list[Capability]] = None
    user_id: Optional[str] = None

    @field_validator("rights", mode="after")
    @classmethod
    def dedupe_rights(cls, values: Optional[list[Capability]]) -> Optional[list[str]]:
        """Store rights as plain strings, first occurrence wins."""
        return None if values is None else normalize_rights(values)


class AccountUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}. Omitted fields are unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    surname: Optional[str] = Field(default=None, min_length=1, max_length=50)
    middle_name: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    phone_number: Optional[str] = Field(default=None, min_length=1, max_length=20)
    location: Optional[str] = Field(default=None, max_length=100)
    status: Optional[StatusEnum] = None
    rights: Optional[list[Capability]] = None
    password: Optional[str] = Field(default=None, min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    user_id: Optional[str] = None

    @field_validator("rights", mode="after")
    @classmethod
    def dedupe_rights(cls, values: Optional[list[Capability]]) -> Optional[list[str]]:
        """Store rights as plain strings, first occurrence wins."""
        return None if values is None else normalize_rights(values)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/profile -- the caller's own details."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    surname: Optional[str] = Field(default=None, min_length=1, max_length=50)
    middle_name: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    phone_number: Optional[str] = Field(default=None, min_length=1, max_length=20)
    location: Optional[str] = Field(default=None, max_length=100)


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/auth/change-password and .../reset-password."""

    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Identity summary returned alongside a session token."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    full_name: str
    email: str
    position: str
    rights: list[str]
    require_password_change: bool


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    full_name: str
    first_name: str
    surname: str
    middle_name: str
    department: str
    position: str
    email: str
    phone_number: str
    location: str
    rights: list[str]
    status: str
    must_change_password: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Factory Method: the domain-to-transport mapping lives beside the model."""
        return cls(**_account_fields(account))


class AccountLockView(AccountResponse):
    """AccountResponse plus lockout detail, for administrators."""

    lock_state: str
    failed_attempts: int
    lock_expires_at: Optional[str] = None
    is_locked: bool

    @classmethod
    def from_account(cls, account: Account) -> "AccountLockView":
        return cls(
            **_account_fields(account),
            lock_state=account.lock_state,
            failed_attempts=account.failed_attempts,
            lock_expires_at=account.lock_expires_at,
            is_locked=account.lock_state != LockState.OPEN.value,
        )


def _account_fields(account: Account) -> dict:
    return {
        "user_id": account.display_id,
        "full_name": account.full_name,
        "first_name": account.first_name,
        "surname": account.surname,
        "middle_name": account.middle_name,
        "department": account.department,
        "position": account.position,
        "email": account.email,
        "phone_number": account.phone_number,
        "location": account.location,
        "rights": list(account.rights),
        "status": account.effective_status,
        "must_change_password": account.must_change_password,
        "last_login": account.last_login,
        "created_at": account.created_at,
        "updated_at": account.updated_at,
    }


class AccountActionResponse(BaseModel):
    """Response for lock/unlock and password reset."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: AccountLockView


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RightsResponse(BaseModel):
    """Response for GET /api/v1/auth/rights -- the capability vocabulary."""

    model_config = ConfigDict(frozen=True)

    rights: list[str]
    default: list[str]


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    lock_type, field, remaining_attempts and missing appear only on the errors
    that carry them.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    lock_type: Optional[str] = None
    field: Optional[str] = None
    remaining_attempts: Optional[int] = None
    missing: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
