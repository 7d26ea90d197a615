"""SQLAlchemy engine helpers and the transaction handle owned by import jobs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class TransactionOutcome(str, Enum):
    """How a :class:`TransactionHandle` was released."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionClosedError(RuntimeError):
    """Raised when a released transaction handle is used again."""

    def __init__(self, outcome: TransactionOutcome, reason: str | None = None):
        self.outcome = outcome
        self.reason = reason
        message = f"Transaction already {outcome.value.replace('_', ' ')}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransactionHandle:
    """A single database transaction that can be released at most once.

    Every use of the underlying connection goes through the handle's lock, so
    a rollback issued from another thread waits for the statement in flight
    and later statements fail with :class:`TransactionClosedError`. The first
    caller of :meth:`commit` or :meth:`rollback` wins; later calls return
    ``False`` without touching the database.
    """

    def __init__(self, connection: Connection):
        self._connection = connection
        self._transaction = connection.begin()
        self._lock = threading.RLock()
        self._outcome: TransactionOutcome | None = None
        self._reason: str | None = None
        self._aborted = False
        self._released_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self._outcome is None

    @property
    def outcome(self) -> TransactionOutcome | None:
        return self._outcome

    @property
    def rollback_reason(self) -> str | None:
        return self._reason

    @property
    def aborted(self) -> bool:
        """Whether the winning release was an abort request."""
        return self._aborted

    @property
    def released_at(self) -> datetime | None:
        return self._released_at

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Yield the transaction's connection while holding the handle."""

        with self._lock:
            if self._outcome is not None:
                raise TransactionClosedError(self._outcome, self._reason)
            yield self._connection

    def commit(self) -> bool:
        """Commit the transaction; return ``False`` if it was already released.

        When the commit itself fails the transaction is rolled back before the
        error propagates, so the handle is never left half-open.
        """

        with self._lock:
            if self._outcome is not None:
                return False
            try:
                self._transaction.commit()
            except Exception as exc:
                self._rollback_locked(f"Commit failed: {exc}")
                raise
            self._release_locked(TransactionOutcome.COMMITTED, None)
            return True

    def rollback(self, reason: str | None = None, *, aborted: bool = False) -> bool:
        """Roll back the transaction; return ``False`` if it was already released.

        ``aborted`` marks the release as an abort so the owner can tell it
        apart from a rollback caused by a failure.
        """

        with self._lock:
            if self._outcome is not None:
                return False
            self._aborted = aborted
            self._rollback_locked(reason)
            return True

    def _rollback_locked(self, reason: str | None) -> None:
        try:
            self._transaction.rollback()
        except SQLAlchemyError:
            # closing the connection returns it to the pool, which resets it
            logger.exception("Rollback failed; discarding connection")
        self._release_locked(TransactionOutcome.ROLLED_BACK, reason)

    def _release_locked(self, outcome: TransactionOutcome, reason: str | None) -> None:
        self._outcome = outcome
        self._reason = reason
        self._released_at = datetime.now(timezone.utc)
        try:
            self._connection.close()
        except SQLAlchemyError:
            logger.warning("Failed to close connection after %s", outcome.value, exc_info=True)


class TransactionalStore:
    """Hands out :class:`TransactionHandle` objects bound to one engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, **kwargs: object) -> "TransactionalStore":
        return cls(get_engine(database_url, **kwargs))

    def begin(self) -> TransactionHandle:
        connection = self.engine.connect()
        try:
            return TransactionHandle(connection)
        except Exception:
            connection.close()
            raise

    def dispose(self) -> None:
        self.engine.dispose()


def get_engine(database_url: str, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    SQLite connections are shared across threads because an abort may roll
    back a transaction opened by a runner thread.
    """

    if not database_url:
        raise RuntimeError("DATABASE_URL is not configured.")

    if database_url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", None) or {})  # type: ignore[arg-type]
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args

    engine = create_engine(database_url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


__all__ = [
    "TransactionClosedError",
    "TransactionHandle",
    "TransactionOutcome",
    "TransactionalStore",
    "get_engine",
]
