# Overview: Retry, locking and timeout helpers shared by the store adapters.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .audit_errors import AuditError, StoreTimeout, StoreUnavailable


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def _apply_statement_timeout(timeout: float) -> None:
    # Only PostgreSQL can cancel a running statement server-side.
    if db.session.get_bind().dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))


def _is_statement_timeout(exc: Exception) -> bool:
    message = str(exc).lower()
    return "statement timeout" in message or "canceling statement" in message


def run_store_call(
    operation: str,
    func,
    *,
    write: bool = True,
    timeout: float | None = None,
    attempts: int | None = None,
):
    """
    Run one store call as its own unit of work.

    - The call is bounded by `timeout` seconds: on PostgreSQL via
      statement_timeout, everywhere by refusing to commit work that took
      longer than the bound.
    - Transient lock/version failures are retried (run_with_retry).
    - Any SQLAlchemy failure is rolled back and re-raised as
      StoreUnavailable (StoreTimeout for timeouts), with the original
      exception chained as __cause__.
    - AuditError subclasses raised by `func` pass through after rollback.
    """
    config = current_app.config
    if timeout is None:
        timeout = config.get("AUDIT_STORE_TIMEOUT_SECONDS", 5.0)
    if attempts is None:
        attempts = config.get("AUDIT_STORE_RETRY_ATTEMPTS", 3)

    def _op():
        started = time.monotonic()
        _apply_statement_timeout(timeout)
        result = func()
        if write:
            db.session.flush()
        if time.monotonic() - started > timeout:
            db.session.rollback()
            raise StoreTimeout(operation, timeout)
        if write:
            db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts)
    except AuditError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        if _is_statement_timeout(exc):
            raise StoreTimeout(operation, timeout) from exc
        raise StoreUnavailable(operation, exc.__class__.__name__) from exc
