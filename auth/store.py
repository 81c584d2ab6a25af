"""
auth/store.py -- SQLAlchemy Core persistence layer for administrative accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route, policy and allocator code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  display_id, email and phone_number carry UNIQUE constraints. The datastore is
  the authority: no pre-check is trusted, and an IntegrityError from a write is
  translated into DuplicateError naming the offending field. A duplicate on
  display_id means an allocated id collided with one written by other means.

Counters:
  sequence_counters holds one row per allocator namespace. It is read and
  written only through get_sequence(), reserve_sequence() and
  compare_and_set_sequence(), which the IdentifierAllocator alone calls.

Errors:
  Any other SQLAlchemyError raised by a repository call is re-raised as
  StoreError, so callers above this layer never see driver exceptions.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    false,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateError, StoreError
from auth.models import Account, LockState

logger = logging.getLogger("adminaccess.auth.store")

ACCOUNT_SEQUENCE = "account_id"

# Columns whose UNIQUE constraint can fire on insert/update, in match order.
_UNIQUE_FIELDS = ("display_id", "email", "phone_number")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("ref", String(32), primary_key=True),
    Column("display_id", String(5), nullable=False, unique=True),
    Column("first_name", String(50), nullable=False),
    Column("surname", String(50), nullable=False),
    Column("middle_name", String(50), nullable=False, server_default=""),
    Column("department", String(100), nullable=False),
    Column("position", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone_number", String(20), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("location", String(100), nullable=False, server_default=""),
    Column("rights", JSON, nullable=False),
    Column("status", String(10), nullable=False, server_default="active"),
    Column("lock_state", String(20), nullable=False, server_default=LockState.OPEN.value),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_expires_at", String(32)),
    Column("last_login", String(32)),
    Column("must_change_password", Boolean, nullable=False, server_default=false()),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sequence_counters = Table(
    "sequence_counters",
    _metadata,
    Column("name", String(50), primary_key=True),
    Column("seq", Integer, nullable=False, server_default="0"),
)

# Fields update_account() accepts. ref and created_at are immutable.
_MUTABLE_FIELDS = {c.name for c in _accounts.columns} - {"ref", "created_at", "updated_at"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _duplicate_field(exc: IntegrityError) -> str | None:
    """Name the unique column an IntegrityError refers to, if any.

    SQLite reports "UNIQUE constraint failed: accounts.email"; PostgreSQL names
    the constraint ("accounts_email_key"). Both contain the column name.
    """
    message = str(exc.orig)
    for name in _UNIQUE_FIELDS:
        if name in message:
            return name
    return None


def _translate_integrity_error(exc: IntegrityError) -> Exception:
    field = _duplicate_field(exc)
    if field is not None:
        return DuplicateError(field)
    logger.error("Integrity error without a known unique field: %s", exc.orig)
    return StoreError("The datastore rejected the write.")


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy exceptions raised inside the block to domain errors."""
    try:
        yield
    except IntegrityError as exc:
        raise _translate_integrity_error(exc) from exc
    except SQLAlchemyError as exc:
        logger.error("Datastore error during %s: %s", operation, exc)
        raise StoreError("The datastore is unavailable.") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities and allocator sequence counters.

    Usage:
        store = AccountStore("sqlite:///accounts.db")
        ref = store.insert_account(account)
        account = store.get_by_display_id("10001")
        store.close()
    """

    def __init__(self, db_url: str, connect_timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = connect_timeout
        else:
            connect_args["connect_timeout"] = int(connect_timeout)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_sequence(ACCOUNT_SEQUENCE)

    def _ensure_sequence(self, name: str) -> None:
        """Create the counter row for a namespace if it does not exist yet.

        Idempotent: a concurrent creator winning the race is the same outcome.
        """
        with self.engine.connect() as conn:
            exists = conn.execute(select(_sequence_counters.c.name).where(_sequence_counters.c.name == name)).fetchone()
            if exists is not None:
                return
            try:
                conn.execute(_sequence_counters.insert().values(name=name, seq=0))
                conn.commit()
            except IntegrityError:
                conn.rollback()

    def ping(self) -> bool:
        """Return True if the datastore answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Datastore ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def insert_account(self, account: Account) -> str:
        """Insert a new account and return its stable reference.

        Raises DuplicateError(field) when display_id, email or phone_number is
        already taken. Callers that allocated the display_id treat a
        display_id duplicate as a collision and allocate again.
        """
        ref = account.ref or uuid.uuid4().hex
        now = _now_iso()
        with _translate_errors("insert_account"), self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    ref=ref,
                    display_id=account.display_id,
                    first_name=account.first_name,
                    surname=account.surname,
                    middle_name=account.middle_name,
                    department=account.department,
                    position=account.position,
                    email=account.email,
                    phone_number=account.phone_number,
                    hashed_password=account.hashed_password,
                    location=account.location,
                    rights=list(account.rights),
                    status=account.status,
                    lock_state=account.lock_state,
                    failed_attempts=account.failed_attempts,
                    lock_expires_at=account.lock_expires_at,
                    last_login=account.last_login,
                    must_change_password=account.must_change_password,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return ref

    def get_by_ref(self, ref: str) -> Account | None:
        with _translate_errors("get_by_ref"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.ref == ref)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_display_id(self, display_id: str) -> Account | None:
        with _translate_errors("get_by_display_id"), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.display_id == display_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        """Return all accounts ordered by display identifier."""
        with _translate_errors("list_accounts"), self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.display_id)).fetchall()
        return [_row_to_account(r) for r in rows]

    def count_accounts(self) -> int:
        with _translate_errors("count_accounts"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return result or 0

    def update_account(self, ref: str, **fields) -> bool:
        """Update mutable fields on an existing account.

        Returns True if a row was updated, False if ref was not found.
        Raises DuplicateError when a unique field collides.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "rights" in fields:
            fields["rights"] = list(fields["rights"])
        fields["updated_at"] = _now_iso()
        with _translate_errors("update_account"), self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.ref == ref).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_account(self, ref: str) -> bool:
        """Permanently delete an account. Bootstrap protection is the caller's job."""
        with _translate_errors("delete_account"), self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.ref == ref))
            conn.commit()
        return result.rowcount > 0

    def record_login(self, ref: str) -> None:
        """Stamp last_login with the current UTC time."""
        with _translate_errors("record_login"), self.engine.connect() as conn:
            conn.execute(_accounts.update().where(_accounts.c.ref == ref).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Lockout counters
    # ------------------------------------------------------------------

    def increment_failed_attempts(self, ref: str) -> int:
        """Atomically add one failed attempt and return the new count.

        The increment is a single-row UPDATE evaluated by the datastore, so two
        concurrent failures for the same account both count.
        """
        with _translate_errors("increment_failed_attempts"), self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.ref == ref)
                .values(failed_attempts=_accounts.c.failed_attempts + 1, updated_at=_now_iso())
            )
            count = conn.execute(select(_accounts.c.failed_attempts).where(_accounts.c.ref == ref)).scalar()
            conn.commit()
        return count or 0

    # ------------------------------------------------------------------
    # Display identifier scan (allocator only)
    # ------------------------------------------------------------------

    def highest_display_id(self) -> str | None:
        """Return the numerically highest display id.

        Display ids are fixed-width five-digit strings, so string order is
        numeric order.
        """
        with _translate_errors("highest_display_id"), self.engine.connect() as conn:
            return conn.execute(select(func.max(_accounts.c.display_id))).scalar()

    # ------------------------------------------------------------------
    # Sequence counters (allocator only)
    # ------------------------------------------------------------------

    def get_sequence(self, name: str) -> int:
        with _translate_errors("get_sequence"), self.engine.connect() as conn:
            value = conn.execute(select(_sequence_counters.c.seq).where(_sequence_counters.c.name == name)).scalar()
        return value or 0

    def reserve_sequence(self, name: str, minimum: int = 0) -> int:
        """Atomically advance the counter and return the value it now holds.

        The counter is first raised to minimum if it is lower, then incremented
        by one. Both UPDATEs and the read-back share one transaction, so the
        returned value belongs to this caller alone.
        """
        row = _sequence_counters.c.name == name
        with _translate_errors("reserve_sequence"), self.engine.connect() as conn:
            conn.execute(
                _sequence_counters.update().where(row & (_sequence_counters.c.seq < minimum)).values(seq=minimum)
            )
            conn.execute(_sequence_counters.update().where(row).values(seq=_sequence_counters.c.seq + 1))
            value = conn.execute(select(_sequence_counters.c.seq).where(row)).scalar()
            conn.commit()
        return value

    def compare_and_set_sequence(self, name: str, expected: int, new: int) -> bool:
        """Set the counter to new only if it still holds expected.

        Returns False when another allocation moved the counter in between.
        """
        with _translate_errors("compare_and_set_sequence"), self.engine.connect() as conn:
            result = conn.execute(
                _sequence_counters.update()
                .where((_sequence_counters.c.name == name) & (_sequence_counters.c.seq == expected))
                .values(seq=new)
            )
            conn.commit()
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        ref=row.ref,
        display_id=row.display_id,
        first_name=row.first_name,
        surname=row.surname,
        middle_name=row.middle_name or "",
        department=row.department,
        position=row.position,
        email=row.email,
        phone_number=row.phone_number,
        hashed_password=row.hashed_password,
        location=row.location or "",
        rights=list(row.rights or []),
        status=row.status,
        lock_state=row.lock_state,
        failed_attempts=row.failed_attempts or 0,
        lock_expires_at=row.lock_expires_at,
        last_login=row.last_login,
        must_change_password=bool(row.must_change_password),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
