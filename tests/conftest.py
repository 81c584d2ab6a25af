"""
tests/conftest.py -- Shared test fixtures for the admin access test suite.

This module provides:
  - store / allocator / make_account: unit-level fixtures over an in-memory DB
  - _make_test_store(): an isolated named shared-memory store for API tests
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: (client, token, store) -- TestClient plus a bootstrap session

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment variables must be set before any auth/core import: get_settings()
is cached and auth.tokens reads it at module load.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("BOOTSTRAP_PASSWORD", "bootstrap-pass")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.allocator import IdentifierAllocator
from auth.lockout import LockoutPolicy
from auth.models import Account
from auth.provisioning import ensure_bootstrap_account
from auth.store import AccountStore
from auth.tokens import hash_password, issue_session_token
from core.config import get_settings

_counter = itertools.count(1)


def _unique_contact() -> tuple[str, str]:
    """Return an (email, phone) pair never used before in this session."""
    n = next(_counter)
    return f"user{n}@example.com", f"07{n:08d}"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """Fresh in-memory AccountStore, empty apart from the sequence counter."""
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def allocator(store: AccountStore) -> IdentifierAllocator:
    return IdentifierAllocator(store, floor=10000)


@pytest.fixture
def make_account() -> Callable[..., Account]:
    """Factory for unsaved Account objects with unique email and phone number.

    The password is "secret-pass" unless overridden with password=...
    """

    def _make(password: str = "secret-pass", **overrides) -> Account:
        email, phone = _unique_contact()
        fields = {
            "first_name": "Neema",
            "surname": "Kimaro",
            "department": "Operations",
            "position": "Officer",
            "email": email,
            "phone_number": phone,
            "hashed_password": hash_password(password),
        }
        fields.update(overrides)
        return Account(**fields)

    return _make


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'auth', 'accounts').
    """
    return AccountStore(f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore):
    """Return an async context manager that replaces the real lifespan."""
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.allocator = IdentifierAllocator(store, floor=settings.id_floor)
        app.state.lockout_policy = LockoutPolicy(
            store,
            threshold=settings.lockout_threshold,
            lock_minutes=settings.lockout_minutes,
        )
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[tuple[TestClient, str, AccountStore], None, None]:
    """Yield (client, token, store) for API integration tests.

    The bootstrap account (10000, every management right) is seeded before
    the client starts and token is a session for it. Each test module gets
    its own datastore, named after the module.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    bootstrap = ensure_bootstrap_account(store, get_settings())
    token = issue_session_token(bootstrap)

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, store

    store.close()
