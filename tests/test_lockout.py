"""
tests/test_lockout.py -- Unit tests for auth/lockout.py.

Covers:
  - Three consecutive failures lock the account for 30 minutes
  - A correct password during the lock is still refused
  - The lock expires lazily and the counter restarts from zero
  - Success before the threshold resets the counter
  - Administrator lock takes precedence over everything and never expires
  - Administrator unlock and password-reset clear both lock modes
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.lockout import LockoutPolicy
from auth.models import LockState, LoginOutcome
from auth.provisioning import provision_account


class FakeClock:
    """Settable stand-in for datetime.now(timezone.utc)."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy(store, clock) -> LockoutPolicy:
    return LockoutPolicy(store, threshold=3, lock_minutes=30, clock=clock)


@pytest.fixture
def account(store, allocator, make_account):
    return provision_account(store, allocator, make_account(password="right-pass"))


def _fresh(store, account):
    return store.get_by_ref(account.ref)


class TestFailedAttempts:
    def test_first_failure_reports_two_remaining(self, store, policy, account) -> None:
        result = policy.check_login(account, "wrong-pass")
        assert result.outcome is LoginOutcome.REJECTED
        assert result.remaining_attempts == 2
        assert _fresh(store, account).failed_attempts == 1

    def test_third_failure_locks_for_thirty_minutes(self, store, policy, account, clock) -> None:
        policy.check_login(_fresh(store, account), "wrong-1")
        policy.check_login(_fresh(store, account), "wrong-2")
        result = policy.check_login(_fresh(store, account), "wrong-3")

        assert result.outcome is LoginOutcome.LOCKED_TIMED
        stored = _fresh(store, account)
        assert stored.lock_state == LockState.TIMED_LOCKED.value
        assert stored.effective_status == "locked"
        assert datetime.fromisoformat(stored.lock_expires_at) == clock.now + timedelta(minutes=30)

    def test_correct_password_refused_while_timed_locked(self, store, policy, account, clock) -> None:
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        clock.advance(minutes=10)
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.outcome is LoginOutcome.LOCKED_TIMED

    def test_timed_lock_expires(self, store, policy, account, clock) -> None:
        """After 31 minutes the lock is cleared on read and the right password works."""
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        clock.advance(minutes=31)

        assert policy.current_state(_fresh(store, account)) is LockState.OPEN
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.allowed
        stored = _fresh(store, account)
        assert stored.lock_state == LockState.OPEN.value
        assert stored.failed_attempts == 0
        assert stored.lock_expires_at is None

    def test_counter_restarts_after_expiry(self, store, policy, account, clock) -> None:
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        clock.advance(minutes=31)
        result = policy.check_login(_fresh(store, account), "wrong-4")
        assert result.outcome is LoginOutcome.REJECTED
        assert result.remaining_attempts == 2

    @pytest.mark.parametrize("failures", [1, 2])
    def test_success_resets_counter(self, store, policy, account, failures: int) -> None:
        for i in range(failures):
            policy.check_login(_fresh(store, account), f"wrong-{i}")
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.allowed
        assert _fresh(store, account).failed_attempts == 0

        # The next failure starts the count again.
        again = policy.check_login(_fresh(store, account), "wrong-again")
        assert again.remaining_attempts == 2


class TestAdminLock:
    def test_admin_lock_refuses_correct_password(self, store, policy, account) -> None:
        policy.admin_lock(_fresh(store, account))
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.outcome is LoginOutcome.LOCKED_ADMIN

    def test_admin_lock_takes_precedence_over_timed_lock(self, store, policy, account) -> None:
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        policy.admin_lock(_fresh(store, account))
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.outcome is LoginOutcome.LOCKED_ADMIN

    def test_admin_lock_never_expires(self, store, policy, account, clock) -> None:
        policy.admin_lock(_fresh(store, account))
        clock.advance(days=30)
        assert policy.current_state(_fresh(store, account)) is LockState.ADMIN_LOCKED
        result = policy.check_login(_fresh(store, account), "right-pass")
        assert result.outcome is LoginOutcome.LOCKED_ADMIN

    def test_admin_lock_does_not_count_attempts(self, store, policy, account) -> None:
        policy.admin_lock(_fresh(store, account))
        for _ in range(5):
            policy.check_login(_fresh(store, account), "wrong")
        assert _fresh(store, account).failed_attempts == 0

    def test_admin_unlock_clears_everything(self, store, policy, account) -> None:
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        policy.admin_lock(_fresh(store, account))
        policy.admin_unlock(_fresh(store, account))

        stored = _fresh(store, account)
        assert stored.lock_state == LockState.OPEN.value
        assert stored.failed_attempts == 0
        assert policy.check_login(stored, "right-pass").allowed

    def test_clear_lifts_timed_lock(self, store, policy, account) -> None:
        for attempt in ("wrong-1", "wrong-2", "wrong-3"):
            policy.check_login(_fresh(store, account), attempt)
        policy.clear(_fresh(store, account))
        assert policy.check_login(_fresh(store, account), "right-pass").allowed
