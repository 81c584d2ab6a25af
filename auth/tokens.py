"""
auth/tokens.py -- Password hashing, session issuance and session verification.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds. _DUMMY_HASH enables timing equalization
       when a login names an unknown display id, so response time does not
       reveal whether the account exists [C1].

  Sessions: python-jose with HS256. Tokens carry the account's stable ref
       (sub), its display id (uid), a snapshot of its rights, and a fixed
       expiry. There is no refresh and no server-side revocation list.

  Verification: malformed, expired and badly signed tokens all raise the same
       InvalidToken. The caller cannot tell which check failed, so the
       verifier is not an oracle. A valid token is then resolved against the
       datastore; the stored rights, not the token snapshot, are what the
       RightsGate sees.

  SECRET_KEY: sourced from core.config.get_settings(), which validates length
       and refuses to start in production without one [M6].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import AccountNotFound, InvalidToken
from auth.models import Account, Identity
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import AccountStore

logger = logging.getLogger("adminaccess.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# Claims a session token must carry to be considered well-formed.
_REQUIRED_CLAIMS = ("sub", "uid", "rights", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates at 72 bytes; the API layer caps passwords at 72
    characters (Pydantic field) to keep inputs below the threshold.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("adminaccess_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt comparison against the dummy hash [C1].

    Login calls this when the display id is unknown so the response takes as
    long as a real credential check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session issuance
# ---------------------------------------------------------------------------


def issue_session_token(account: Account, issued_at: datetime | None = None) -> str:
    """Mint a signed session token for a freshly authenticated account.

    The rights list is a snapshot at issuance. Expiry is fixed at
    Settings.token_expire_seconds (24 hours by default).

    Args:
        account:   The authenticated account.
        issued_at: Override the issue time. Defaults to now (UTC).
    """
    now = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": account.ref,
        "uid": account.display_id,
        "rights": list(account.rights),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=_settings.token_expire_seconds)).timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Decode and verify a session token. Returns the payload.

    Raises InvalidToken for any failure: bad structure, bad signature,
    expired, or missing claims.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidToken() from exc
    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        raise InvalidToken()
    if not isinstance(payload["rights"], list):
        raise InvalidToken()
    return payload


# ---------------------------------------------------------------------------
# Session verification
# ---------------------------------------------------------------------------


def verify_session(store: AccountStore, token: str) -> Identity:
    """Resolve a bearer token to a live Identity.

    Raises:
        InvalidToken:    token malformed, expired, or badly signed.
        AccountNotFound: token valid but the account has been deleted.
    """
    payload = decode_session_token(token)
    account = store.get_by_ref(payload["sub"])
    if account is None:
        logger.info("Session presented for deleted account %s", payload.get("uid"))
        raise AccountNotFound()
    return Identity(
        ref=account.ref,
        display_id=account.display_id,
        rights=frozenset(account.rights),
        account=account,
        token_rights=tuple(payload["rights"]),
    )
