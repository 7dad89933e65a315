# Overview: Transaction boundaries, row locking and retry policy for stock writes.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import LockTimeoutError
from ..extensions import db

logger = logging.getLogger(__name__)

_SCOPE_DEPTH = "stockledger.scope_depth"

# Driver messages / SQLSTATEs that mean "gave up waiting for a lock"
_LOCK_TIMEOUT_SQLSTATES = {"55P03"}
_LOCK_TIMEOUT_MARKERS = (
    "database is locked",
    "lock timeout",
    "lock wait timeout",
    "could not obtain lock",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole database is
    write-locked by BEGIN IMMEDIATE in transaction_scope().
    """
    return query.with_for_update()


def in_transaction_scope() -> bool:
    return db.session().info.get(_SCOPE_DEPTH, 0) > 0


@contextmanager
def transaction_scope():
    """
    Unit of work for one use case.

    The outermost scope bounds lock waits, commits on success and rolls back
    on any exception. Nested scopes (a workflow calling the ledger) join the
    outer transaction and neither commit nor roll back on their own.
    """
    session = db.session()
    depth = session.info.get(_SCOPE_DEPTH, 0)
    if depth == 0:
        _begin(session)
    session.info[_SCOPE_DEPTH] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except BaseException:
        if depth == 0:
            session.rollback()
        raise
    finally:
        session.info[_SCOPE_DEPTH] = depth


def _begin(session) -> None:
    timeout_ms = int(current_app.config.get("STOCK_LOCK_TIMEOUT_MS", 5000))
    connection = session.connection()
    dialect = connection.dialect.name

    if dialect == "sqlite":
        connection.exec_driver_sql(f"PRAGMA busy_timeout = {timeout_ms}")
        raw = connection.connection.dbapi_connection
        # Take the write lock up front so two writers never interleave reads and writes
        if not raw.in_transaction:
            connection.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        connection.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
    elif dialect in {"mysql", "mariadb"}:
        seconds = max(1, timeout_ms // 1000)
        connection.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))


def is_lock_timeout(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _LOCK_TIMEOUT_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks) and StaleDataError (optimistic
    locking conflicts). A lock-wait timeout is not retried here: it is
    raised as LockTimeoutError so the caller can back off.

    Inside an open transaction_scope() the function runs once; retrying
    only part of an outer unit of work would be wrong.
    """
    if in_transaction_scope():
        return func()

    config = current_app.config
    if attempts is None:
        attempts = int(config.get("STOCK_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(config.get("STOCK_RETRY_BACKOFF", 0.1))
    attempts = max(1, attempts)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            if is_lock_timeout(exc):
                logger.warning("stock.lock_timeout", extra={"attempt": attempt + 1})
                raise LockTimeoutError(
                    "Timed out waiting for a stock lock",
                    timeout_ms=config.get("STOCK_LOCK_TIMEOUT_MS"),
                ) from exc
            last_exc = exc
            if attempt >= attempts - 1:
                raise
        except StaleDataError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
        logger.info("stock.retry", extra={"attempt": attempt + 1, "error": type(last_exc).__name__})
        time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
