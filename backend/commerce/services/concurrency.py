# Overview: Service-layer helpers for concurrency; guarded updates and bounded retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceConflict
from ..extensions import db


def guarded_update(model, *criteria, values: dict) -> int:
    """
    Single-statement conditional update: UPDATE model SET values WHERE criteria.

    Returns the affected row count; 0 means the guard did not hold (or the row
    does not exist). Never reads-then-writes.
    """
    return db.session.query(model).filter(*criteria).update(
        values, synchronize_session=False
    )


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks), StaleDataError (optimistic locking)
    and PersistenceConflict raised by the operation itself. Once attempts are
    exhausted the failure surfaces as PersistenceConflict. Every other error
    rolls the session back and propagates untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("CONFLICT_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("CONFLICT_RETRY_BACKOFF", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, PersistenceConflict) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, PersistenceConflict):
                    raise
                raise PersistenceConflict("Concurrent update conflict; retry the request") from exc
            current_app.logger.info(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise PersistenceConflict("Concurrent update conflict; retry the request")
