"""
auth/rights.py -- The RightsGate: capability checks for verified identities.

Semantics are conjunctive. Every required capability must be present in the
identity's rights; one missing capability denies the whole request. A denial
is always reported, never downgraded to a reduced view.

The identity's rights come from the account as stored at verification time
(see auth.tokens.verify_session), so a revoked capability takes effect on the
next request rather than at the next login.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from auth.errors import RightsError
from auth.models import Capability, Identity


class Decision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


def _values(required: Iterable) -> set[str]:
    return {r.value if isinstance(r, Capability) else str(r) for r in required}


def missing_rights(identity: Identity, required: Iterable) -> set[str]:
    """Return the required capabilities the identity does not hold."""
    return _values(required) - identity.rights


def authorize(identity: Identity, required: Iterable) -> Decision:
    if missing_rights(identity, required):
        return Decision.DENIED
    return Decision.ALLOWED


def enforce(identity: Identity, required: Iterable) -> Identity:
    """Raise RightsError naming the missing capabilities, else return identity."""
    missing = missing_rights(identity, required)
    if missing:
        raise RightsError(missing)
    return identity
