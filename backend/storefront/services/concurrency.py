# Overview: Row locking and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Row-level lock for read-modify-write sections (carts, refunds).

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id columns
    and conditional UPDATEs carry the guarantee instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 5, backoff_base: float = 0.05):
    """
    Run a unit of work, retrying on lock contention and optimistic-lock conflicts.

    The session is rolled back before each retry so `func` always starts
    from fresh rows. Domain errors are never retried.
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


def rowcount_of(result) -> int:
    """Rows matched by an executed UPDATE/DELETE (0 when the driver cannot tell)."""
    count = getattr(result, "rowcount", None)
    if count is None or count < 0:
        return 0
    return count
