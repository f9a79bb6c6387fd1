# Overview: Transaction scoping, row locking and bounded retry for ledger writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import Conflict

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}


class PendingWorkError(RuntimeError):
    """A ledger operation was started while the session held uncommitted writes."""


def has_uncommitted_writes() -> bool:
    """
    True when the session carries unflushed objects, or (on SQLite) when the
    connection already holds flushed but uncommitted DML.
    """
    session = db.session
    if session.new or session.dirty or session.deleted:
        return True
    if not session().in_transaction() or db.engine.dialect.name != "sqlite":
        return False
    dbapi_connection = session.connection().connection.dbapi_connection
    return bool(getattr(dbapi_connection, "in_transaction", False))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the BEGIN IMMEDIATE
    issued by begin_ledger_transaction() already serializes writers.
    """
    return query.with_for_update()


def begin_ledger_transaction() -> None:
    """
    Open the write transaction for one ledger operation.

    Must be the first statement the operation issues. PostgreSQL gets
    SERIALIZABLE isolation with bounded lock and statement waits; SQLite
    takes the database write lock up front so two decrements of the same
    stock row cannot interleave.
    """
    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
        return

    db.session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    if dialect == "postgresql":
        lock_ms = int(current_app.config["LEDGER_LOCK_TIMEOUT_MS"])
        statement_ms = int(current_app.config["LEDGER_STATEMENT_TIMEOUT_MS"])
        db.session.execute(text(f"SET LOCAL lock_timeout = {lock_ms}"))
        db.session.execute(text(f"SET LOCAL statement_timeout = {statement_ms}"))


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        return sqlstate in RETRYABLE_SQLSTATES
    return False


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None, retry_on: tuple = ()):
    """
    Execute one ledger transaction, retrying on concurrency-related failures.

    Retries serialization failures, deadlocks, lock timeouts and optimistic
    version conflicts, plus any extra exception types in `retry_on`. The
    session is rolled back before every retry. When attempts run out the
    last storage error is surfaced as Conflict so callers can decide whether
    to try again.

    Refuses to start (PendingWorkError) when the session already holds
    uncommitted writes; the first rollback would otherwise discard them.
    """
    if attempts is None:
        attempts = int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("LEDGER_RETRY_BACKOFF", 0.05))
    attempts = max(1, attempts)

    if has_uncommitted_writes():
        raise PendingWorkError(
            "Commit or roll back pending session changes before starting a ledger operation"
        )

    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            db.session.rollback()
            if not (is_retryable(exc) or isinstance(exc, retry_on)):
                raise
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Ledger transaction gave up after %d attempts: %s", attempts, exc
                )
                raise Conflict(
                    "Concurrent update conflict; please retry",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.info(
                "Retrying ledger transaction (attempt %d/%d): %s", attempt + 2, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
