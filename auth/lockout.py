"""
auth/lockout.py -- Brute-force lockout state machine.

States (auth.models.LockState):
  OPEN          normal; credentials are checked.
  ADMIN_LOCKED  set by an administrator; cleared only by an administrator.
  TIMED_LOCKED  set after `threshold` consecutive failures; expires after
                `lock_minutes`.

Decision order in check_login():
  1. ADMIN_LOCKED -> LOCKED_ADMIN, regardless of any timed lock.
  2. TIMED_LOCKED and now <= expiry -> LOCKED_TIMED, even with a correct password.
  3. TIMED_LOCKED and now > expiry -> cleared back to OPEN (persisted), then
     the credential check runs as usual.
  4. Credential check:
       success -> counter reset to 0, expiry cleared, ALLOWED.
       failure -> counter incremented in the datastore before answering;
                  reaching the threshold moves to TIMED_LOCKED and answers
                  LOCKED_TIMED, otherwise REJECTED(remaining).

There is no delay or backoff beyond one bcrypt comparison.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import Account, LockState, LoginOutcome, LoginResult
from auth.store import AccountStore
from auth.tokens import verify_password

logger = logging.getLogger("adminaccess.auth.lockout")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockoutPolicy:
    """Tracks failed attempts per account and enforces both lock modes.

    Args:
        store:        Account repository; every transition is persisted there.
        threshold:    Consecutive failures that trigger a timed lock.
        lock_minutes: Length of a timed lock.
        clock:        Returns the current aware UTC datetime. Injected by tests.
    """

    def __init__(
        self,
        store: AccountStore,
        threshold: int = 3,
        lock_minutes: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.threshold = threshold
        self.lock_window = timedelta(minutes=lock_minutes)
        self._clock = clock

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def check_login(self, account: Account, supplied_password: str) -> LoginResult:
        if account.lock_state == LockState.ADMIN_LOCKED.value:
            return LoginResult(LoginOutcome.LOCKED_ADMIN, account)

        if account.lock_state == LockState.TIMED_LOCKED.value:
            if not self._lock_expired(account):
                return LoginResult(LoginOutcome.LOCKED_TIMED, account)
            account = self._clear_expired_lock(account)

        if verify_password(supplied_password, account.hashed_password):
            if account.failed_attempts or account.lock_expires_at:
                self._store.update_account(account.ref, failed_attempts=0, lock_expires_at=None)
                account.failed_attempts = 0
                account.lock_expires_at = None
            return LoginResult(LoginOutcome.ALLOWED, account)

        count = self._store.increment_failed_attempts(account.ref)
        account.failed_attempts = count
        if count >= self.threshold:
            expires = (self._clock() + self.lock_window).isoformat()
            self._store.update_account(
                account.ref,
                lock_state=LockState.TIMED_LOCKED.value,
                lock_expires_at=expires,
            )
            account.lock_state = LockState.TIMED_LOCKED.value
            account.lock_expires_at = expires
            logger.warning("Account %s locked after %d failed attempts", account.display_id, count)
            return LoginResult(LoginOutcome.LOCKED_TIMED, account)

        remaining = max(0, self.threshold - count)
        logger.info("Failed login for %s (%d attempts remaining)", account.display_id, remaining)
        return LoginResult(LoginOutcome.REJECTED, account, remaining_attempts=remaining)

    def current_state(self, account: Account) -> LockState:
        """Return the lock state as of now, without persisting anything."""
        state = LockState(account.lock_state)
        if state is LockState.TIMED_LOCKED and self._lock_expired(account):
            return LockState.OPEN
        return state

    # ------------------------------------------------------------------
    # Administrator actions
    # ------------------------------------------------------------------

    def admin_lock(self, account: Account) -> None:
        """OPEN/TIMED_LOCKED -> ADMIN_LOCKED. Not time-boxed."""
        self._store.update_account(account.ref, lock_state=LockState.ADMIN_LOCKED.value, lock_expires_at=None)
        account.lock_state = LockState.ADMIN_LOCKED.value
        account.lock_expires_at = None
        logger.warning("Account %s locked by administrator", account.display_id)

    def admin_unlock(self, account: Account) -> None:
        """Any state -> OPEN, with the failure counter and expiry cleared."""
        self._reset(account)
        logger.info("Account %s unlocked by administrator", account.display_id)

    def clear(self, account: Account) -> None:
        """Clear all lock state. Used by administrative password resets."""
        self._reset(account)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_expired(self, account: Account) -> bool:
        if not account.lock_expires_at:
            return True
        expires = datetime.fromisoformat(account.lock_expires_at)
        return self._clock() > expires

    def _clear_expired_lock(self, account: Account) -> Account:
        logger.info("Timed lock on %s expired; clearing", account.display_id)
        self._reset(account)
        return account

    def _reset(self, account: Account) -> None:
        self._store.update_account(
            account.ref,
            lock_state=LockState.OPEN.value,
            failed_attempts=0,
            lock_expires_at=None,
        )
        account.lock_state = LockState.OPEN.value
        account.failed_attempts = 0
        account.lock_expires_at = None
