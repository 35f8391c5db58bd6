# Overview: Transaction and retry helpers shared by every write path.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import PersistenceFailure, SaleEngineError


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction for the current unit of work.

    On SQLite this issues BEGIN IMMEDIATE so concurrent writers queue on the
    database lock up front instead of deadlocking on lock upgrade. Other
    databases rely on their row locks and conditional UPDATEs.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def _default_attempts() -> int:
    return int(current_app.config.get("TILLPOINT_RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB unit of work, retrying on lock contention.

    Retries on OperationalError (locked database, deadlocks) and
    StaleDataError. The session is rolled back before each retry so the
    next attempt starts a fresh transaction.
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_in_write_transaction(func):
    """
    Run `func` as one committed unit of work.

    begin_write() -> func() -> commit. Any engine error rolls the whole unit
    back and propagates unchanged; lock contention is retried; any other
    storage failure is rolled back and surfaced as PersistenceFailure.
    Anything else is rolled back and re-raised, so the session is never
    left with a half-finished transaction.
    """
    def _op():
        try:
            begin_write()
            result = func()
            db.session.commit()
            return result
        except SaleEngineError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError):
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Unit of work failed")
            raise PersistenceFailure("Could not save changes", details={"reason": type(exc).__name__}) from exc
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.error("Unit of work gave up after retries: %s", exc)
        raise PersistenceFailure("Database is busy, please retry", details={"reason": type(exc).__name__}) from exc
