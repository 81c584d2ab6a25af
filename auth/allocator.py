"""
auth/allocator.py -- Compact, reusable display identifiers for accounts.

Display identifiers are five-digit decimal strings above a reserved floor. The
bootstrap account holds the floor itself; everything else is allocated here.

Algorithm (gap-filling):
  1. Find the highest existing display id. Ids at or below the floor do not
     count, so with only the bootstrap account present the scan sees nothing.
  2. Reserve the next counter value atomically. The counter is first raised
     to the scanned maximum (less the floor) if it lags behind, then
     incremented. The reserved value is the answer: floor + counter.
  3. Deleting the account that holds floor + counter hands that slot back by
     stepping the counter down one (release()), so the next allocation reuses
     the freed id.

An interior gap always has a larger id above it, so the only gap that can be
reused is the top slot, and release() covers it. Ids below a still-existing
higher id stay unused.

Every reservation moves the counter strictly upward, so concurrent callers
never receive the same value. The UNIQUE constraint on display_id remains the
last-resort conflict detector for ids written outside the allocator;
provisioning retries such a collision once (see auth/provisioning.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AllocationError, StoreError
from auth.store import ACCOUNT_SEQUENCE, AccountStore

logger = logging.getLogger("adminaccess.auth.allocator")

_MAX_DISPLAY_ID = 99999


def format_display_id(value: int) -> str:
    return f"{value:05d}"


class IdentifierAllocator:
    """Allocate display identifiers from the shared sequence counter."""

    def __init__(self, store: AccountStore, floor: int = 10000, sequence: str = ACCOUNT_SEQUENCE) -> None:
        self._store = store
        self._floor = floor
        self._sequence = sequence

    @property
    def floor(self) -> str:
        """The bootstrap account's display identifier."""
        return format_display_id(self._floor)

    def allocate(self) -> str:
        """Return a display id no other caller has been or will be given.

        The counter update is durable before the id is returned.

        Raises AllocationError if the datastore fails during the scan or the
        five-digit space is exhausted.
        """
        try:
            highest = self._store.highest_display_id()
            minimum = max(int(highest) - self._floor, 0) if highest is not None else 0
            reserved = self._store.reserve_sequence(self._sequence, minimum)
        except (SQLAlchemyError, StoreError) as exc:
            logger.exception("Datastore error during display id allocation")
            raise AllocationError("Datastore unavailable during identifier allocation.") from exc

        chosen = self._floor + reserved
        if chosen > _MAX_DISPLAY_ID:
            raise AllocationError("Display identifier space is exhausted.")
        display_id = format_display_id(chosen)
        logger.info("Allocated display id %s", display_id)
        return display_id

    def release(self, display_id: str) -> bool:
        """Hand back display_id after its account was deleted.

        Only the most recently reserved slot can be returned. The counter
        steps down by one with a compare-and-set, so a reservation made in
        the meantime wins and the slot simply stays unused. Returns True when
        the slot was handed back.
        """
        offset = int(display_id) - self._floor
        if offset <= 0:
            return False
        if not self._store.compare_and_set_sequence(self._sequence, offset, offset - 1):
            return False
        logger.info("Display id %s released for reuse", display_id)
        return True
