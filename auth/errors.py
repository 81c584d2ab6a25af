"""
auth/errors.py -- Exception taxonomy for the access-control core.

Every error carries an HTTP status_code and a machine-readable code so the API
layer can render it with a single exception handler. Domain code raises these;
it never builds HTTP responses itself.

Credential and lock failures never reveal which part of a composite check
failed beyond the documented lock_type distinction.
"""

from __future__ import annotations


class AccessError(Exception):
    """Base class. Subclasses override status_code and code."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def extra(self) -> dict:
        """Additional fields merged into the error payload."""
        return {}


class ValidationError(AccessError):
    status_code = 400
    code = "validation_error"


class DuplicateError(AccessError):
    """A uniqueness constraint rejected a write. field names the column."""

    status_code = 400
    code = "duplicate"

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"An account with that {field.replace('_', ' ')} already exists.")
        self.field = field

    def extra(self) -> dict:
        return {"field": self.field}


class AuthError(AccessError):
    status_code = 401
    code = "unauthorized"


class InvalidToken(AuthError):
    """Malformed, expired, or badly signed token. Deliberately not distinguished."""

    code = "invalid_token"

    def __init__(self) -> None:
        super().__init__("Invalid or expired session token.")


class AccountNotFound(AuthError):
    """The token was valid but its account has since been deleted."""

    code = "account_not_found"

    def __init__(self) -> None:
        super().__init__("Account not found.")


class BadCredentials(AuthError):
    code = "bad_credentials"

    def __init__(self, remaining_attempts: int | None = None) -> None:
        if remaining_attempts is None:
            message = "Invalid credentials."
        else:
            message = f"Invalid credentials. {remaining_attempts} attempts remaining."
        super().__init__(message)
        self.remaining_attempts = remaining_attempts

    def extra(self) -> dict:
        if self.remaining_attempts is None:
            return {}
        return {"remaining_attempts": self.remaining_attempts}


class LockError(AccessError):
    """Account is locked. lock_type is "admin" or "password"."""

    status_code = 403
    code = "account_locked"

    _MESSAGES = {
        "admin": "This account has been locked by an administrator. Please contact support.",
        "password": "This account has been locked due to invalid password. Please contact support.",
    }

    def __init__(self, lock_type: str) -> None:
        super().__init__(self._MESSAGES[lock_type])
        self.lock_type = lock_type

    def extra(self) -> dict:
        return {"lock_type": self.lock_type}


class AccountInactive(AccessError):
    status_code = 403
    code = "account_inactive"

    def __init__(self) -> None:
        super().__init__("Account is inactive.")


class RightsError(AccessError):
    status_code = 403
    code = "insufficient_rights"

    def __init__(self, missing) -> None:
        super().__init__("Insufficient rights.")
        self.missing = sorted(missing)

    def extra(self) -> dict:
        return {"missing": self.missing}


class ProtectedAccountError(AccessError):
    """The requested change targets the bootstrap account or the caller itself."""

    status_code = 403
    code = "bootstrap_protected"


class NotFoundError(AccessError):
    status_code = 404
    code = "not_found"


class StoreError(AccessError):
    status_code = 500
    code = "store_error"


class AllocationError(StoreError):
    code = "allocation_error"
