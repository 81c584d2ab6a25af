"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and rights.

Every protected route resolves its caller in two steps:
  1. get_current_identity() reads "Authorization: Bearer <token>" and runs the
     SessionVerifier (auth.tokens.verify_session) against the account store.
  2. require_rights(...) runs the RightsGate (auth.rights.enforce) on the
     resulting Identity.

Both are plain functions so FastAPI runs them on its worker thread pool; a
datastore read blocks only the request that issued it.

Layer rule: no imports from api/. May import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import AuthError
from auth.models import Capability, Identity
from auth.rights import enforce
from auth.tokens import verify_session


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_current_identity(request: Request) -> Identity:
    """Require a valid session. Raises AuthError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthError("Authentication required.")
    return verify_session(request.app.state.account_store, token)


def require_rights(*required: Capability) -> Callable[..., Identity]:
    """Build a dependency that demands every listed capability.

    Use as a FastAPI dependency:
        @router.post("/users")
        def route(identity: Identity = Depends(require_rights(Capability.MANAGE_USERS))): ...
    """

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        return enforce(identity, required)

    dependency.__name__ = "require_" + "_and_".join(c.value for c in required)
    return dependency
