# Overview: Transaction-boundary helpers shared by every store: row locks, retry, timeouts and storage-error translation.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class StorageError(Exception):
    """
    Wraps an underlying database failure.

    transient=True marks failures a caller may retry with backoff
    (lock timeouts, deadlocks, dropped connections, cancelled statements).
    Constraint violations are never transient.
    """

    def __init__(self, message: str, *, transient: bool = False, original: Exception | None = None):
        super().__init__(message)
        self.transient = transient
        self.original = original


TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, StorageError):
        return exc.transient
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, TRANSIENT_ERRORS)


def to_storage_error(exc: SQLAlchemyError) -> StorageError:
    return StorageError(str(exc.orig if getattr(exc, "orig", None) is not None else exc),
                        transient=is_transient(exc), original=exc)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None, retry_on=TRANSIENT_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    The session is rolled back before every retry, so func must redo all of
    its work from scratch. Non-retryable SQLAlchemy failures, and retryable
    ones that exhaust the attempts, surface as StorageError.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, SQLAlchemyError):
                    raise to_storage_error(exc) from exc
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d of %d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise to_storage_error(exc) from exc


def commit_or_rollback() -> None:
    """Commit the session; on failure roll back and raise StorageError."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise to_storage_error(exc) from exc


@contextmanager
def write_boundary(*, commit: bool = True):
    """
    One logical write.

    With commit=True the block's work is committed on success. Any exception
    rolls the session back and re-raises (SQLAlchemy failures as
    StorageError), so no partial write survives. With commit=False the
    caller owns the transaction and only failures are handled here.
    """
    try:
        yield
        if commit:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise to_storage_error(exc) from exc
    except Exception:
        db.session.rollback()
        raise


@contextmanager
def statement_timeout(seconds: float | None):
    """
    Bound every statement in the current DB transaction by a caller-supplied timeout.

    PostgreSQL honors SET LOCAL statement_timeout until the transaction ends;
    a cancelled statement raises OperationalError, which the stores surface
    as a transient StorageError. Other dialects run without a server-side limit.
    """
    if seconds is None:
        yield
        return
    if seconds <= 0:
        raise ValueError("timeout must be positive")
    bind = db.session.get_bind()
    if bind.dialect.name == "postgresql":
        # SET does not accept bind parameters; the value is an int we computed.
        db.session.execute(text(f"SET LOCAL statement_timeout = {int(seconds * 1000)}"))
    yield


def dialect_name() -> str:
    return db.session.get_bind().dialect.name
