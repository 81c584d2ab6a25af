"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> session dependency ->
LockoutPolicy/AccountStore -> response model serialization -> error envelope.

Coverage:
  - Login happy path, summary fields and Cache-Control
  - 401 for unknown ids and wrong passwords, with remaining attempts
  - 403 lock_type "password" after three failures, even with the right password
  - 403 lock_type "admin" for administrator-locked accounts
  - 403 for inactive accounts
  - 500 store_error when the datastore fails during login
  - /me, /profile, /change-password, /rights with and without a session

Fixtures used (from conftest.py):
  - api_client: (client, token, store) -- token is a session for bootstrap 10000
"""

from __future__ import annotations

import itertools
import os

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from auth.store import AccountStore

BOOTSTRAP_ID = "10000"
BOOTSTRAP_PASSWORD = os.environ["BOOTSTRAP_PASSWORD"]

_seq = itertools.count(1)


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create(client: TestClient, token: str, password: str = "member-pass", **overrides) -> dict:
    """Create an account through the API and return its JSON body."""
    n = next(_seq)
    body = {
        "first_name": "Amani",
        "surname": "Lyimo",
        "department": "Riders",
        "position": "Coordinator",
        "email": f"auth{n}@example.com",
        "phone_number": f"0755{n:06d}",
        "password": password,
    }
    body.update(overrides)
    resp = client.post("/api/v1/users", json=body, headers=_auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _login(client: TestClient, user_id: str, password: str):
    return client.post("/api/v1/auth/login", json={"user_id": user_id, "password": password})


class TestLogin:
    def test_bootstrap_login(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        """POST /auth/login with the bootstrap credentials returns a token and summary."""
        client, _token, _store = api_client
        resp = _login(client, BOOTSTRAP_ID, BOOTSTRAP_PASSWORD)
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 24 * 3600
        user = data["user"]
        assert user["user_id"] == BOOTSTRAP_ID
        assert "manage_users" in user["rights"]
        assert user["require_password_change"] is False

    def test_login_token_is_usable(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        created = _create(client, token)
        session = _login(client, created["user_id"], "member-pass").json()["token"]
        resp = client.get("/api/v1/auth/me", headers=_auth(session))
        assert resp.status_code == 200
        assert resp.json()["user_id"] == created["user_id"]
        assert resp.json()["last_login"] is not None

    def test_unknown_user_id(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, _token, _store = api_client
        resp = _login(client, "99999", "whatever")
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "bad_credentials"
        assert "remaining_attempts" not in error

    def test_wrong_password_reports_remaining(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        created = _create(client, token)
        resp = _login(client, created["user_id"], "not-it")
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["remaining_attempts"] == 2
        assert "2 attempts remaining" in error["message"]

    def test_malformed_user_id_is_validation_error(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, _token, _store = api_client
        resp = _login(client, "abc", "whatever")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_datastore_failure_is_store_error(
        self, api_client: tuple[TestClient, str, AccountStore], monkeypatch
    ) -> None:
        client, _token, store = api_client

        def refuse():
            raise OperationalError("connect", {}, Exception("database is locked"))

        monkeypatch.setattr(store.engine, "connect", refuse)
        resp = _login(client, BOOTSTRAP_ID, BOOTSTRAP_PASSWORD)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "store_error"


class TestLockout:
    def test_three_failures_lock_account(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        """The third failure answers 403 password; the right password is then refused too."""
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        assert _login(client, user_id, "bad-1").status_code == 401
        assert _login(client, user_id, "bad-2").status_code == 401

        third = _login(client, user_id, "bad-3")
        assert third.status_code == 403
        assert third.json()["error"]["lock_type"] == "password"

        fourth = _login(client, user_id, "member-pass")
        assert fourth.status_code == 403
        assert fourth.json()["error"]["lock_type"] == "password"

    def test_admin_locked_account(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        assert client.post(f"/api/v1/users/{user_id}/lock", headers=_auth(token)).status_code == 200

        resp = _login(client, user_id, "member-pass")
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "account_locked"
        assert error["lock_type"] == "admin"

    def test_inactive_account(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        resp = client.put(f"/api/v1/users/{user_id}", json={"status": "inactive"}, headers=_auth(token))
        assert resp.status_code == 200, resp.text

        resp = _login(client, user_id, "member-pass")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_inactive"


class TestSession:
    def test_me_requires_token(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, _token, _store = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_garbage_token(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, _token, _store = api_client
        resp = client.get("/api/v1/auth/me", headers=_auth("not.a.token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_returns_bootstrap(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/auth/me", headers=_auth(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == BOOTSTRAP_ID
        assert "hashed_password" not in data

    def test_deleted_account_session_rejected(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        session = _login(client, user_id, "member-pass").json()["token"]
        assert client.delete(f"/api/v1/users/{user_id}", headers=_auth(token)).status_code == 200

        resp = client.get("/api/v1/auth/me", headers=_auth(session))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "account_not_found"

    def test_rights_vocabulary(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/auth/rights", headers=_auth(token))
        assert resp.status_code == 200
        data = resp.json()
        assert "manage_users" in data["rights"]
        assert "reset_password" in data["rights"]
        assert data["default"] == ["view_only"]


class TestSelfService:
    def test_change_password(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, store = api_client
        user_id = _create(client, token)["user_id"]
        session = _login(client, user_id, "member-pass").json()["token"]
        store.update_account(store.get_by_display_id(user_id).ref, must_change_password=True)

        resp = client.post(
            "/api/v1/auth/change-password",
            json={"new_password": "fresh-pass"},
            headers=_auth(session),
        )
        assert resp.status_code == 200, resp.text

        assert _login(client, user_id, "member-pass").status_code == 401
        relogin = _login(client, user_id, "fresh-pass")
        assert relogin.status_code == 200
        assert relogin.json()["user"]["require_password_change"] is False

    def test_change_password_too_short(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        resp = client.post("/api/v1/auth/change-password", json={"new_password": "abc"}, headers=_auth(token))
        assert resp.status_code == 400

    def test_update_profile(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        session = _login(client, user_id, "member-pass").json()["token"]

        resp = client.put("/api/v1/auth/profile", json={"position": "Supervisor"}, headers=_auth(session))
        assert resp.status_code == 200, resp.text
        assert resp.json()["position"] == "Supervisor"
        assert resp.json()["rights"] == ["view_only"]

    def test_update_profile_ignores_rights(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        """Rights are not part of the profile body, so they cannot be self-granted."""
        client, token, _store = api_client
        user_id = _create(client, token)["user_id"]
        session = _login(client, user_id, "member-pass").json()["token"]

        resp = client.put(
            "/api/v1/auth/profile",
            json={"position": "Lead", "rights": ["manage_users"]},
            headers=_auth(session),
        )
        assert resp.status_code == 200
        assert resp.json()["rights"] == ["view_only"]

    def test_update_profile_empty(self, api_client: tuple[TestClient, str, AccountStore]) -> None:
        client, token, _store = api_client
        resp = client.put("/api/v1/auth/profile", json={}, headers=_auth(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_changes"
