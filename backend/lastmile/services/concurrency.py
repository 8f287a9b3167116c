# Overview: Unit-of-work helpers; every lifecycle command commits once or not at all.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Locking the route row serializes commands against the same route.
    """
    return query.with_for_update()


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one atomic unit: commit on success, roll back on any error.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic version_id conflicts). Domain errors are never retried.
    """
    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
