# Overview: Service-layer concurrency helpers: row locks, retries and compare-and-set updates.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


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


def compare_and_set(model, criteria: list, values: dict) -> bool:
    """
    Single conditional UPDATE: write `values` only where every criterion holds.

    Returns True when exactly one row changed, i.e. this caller won. No row
    is read first, so two callers racing on the same guard cannot both see
    the old state. Models with a version column get it bumped in the same
    statement. The caller owns the commit.
    """
    values = dict(values)
    version_col = getattr(model, "version_id", None)
    if version_col is not None:
        values["version_id"] = version_col + 1

    stmt = (
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def is_unique_violation(exc: Exception) -> bool:
    """IntegrityError raised by a UNIQUE constraint (SQLite and Postgres wording)."""
    if not isinstance(exc, IntegrityError):
        return False
    message = str(getattr(exc, "orig", exc)).lower()
    return "unique" in message or "duplicate key" in message
