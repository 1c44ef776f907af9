"""Write transactions that take row locks: bounded lock waits and error mapping."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from buildtrack.core.errors import ConcurrencyConflictError, PersistenceFailureError
from buildtrack.repositories.project_repository import ProjectRepository

# lock_not_available, deadlock_detected, serialization_failure
_CONFLICT_SQLSTATES = {"55P03", "40P01", "40001"}


def is_lock_conflict(exc: OperationalError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


@contextmanager
def locked_transaction(
    db: Session,
    *,
    lock_timeout_ms: int,
    failure_message: str = "Could not persist changes.",
) -> Iterator[None]:
    """Run the block as one transaction and commit it.

    Row locks wait at most ``lock_timeout_ms``. Lock timeouts, deadlocks and
    stale versions become ``ConcurrencyConflictError``; other database errors
    become ``PersistenceFailureError``. Any failure rolls the session back.

    Locks are taken in one global order: the settings row, then payments by
    id, then milestones by id.
    """

    try:
        ProjectRepository(db).set_lock_timeout(lock_timeout_ms)
        yield
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrencyConflictError("Milestone was modified concurrently. Retry the operation.") from exc
    except OperationalError as exc:
        db.rollback()
        if is_lock_conflict(exc):
            raise ConcurrencyConflictError("Row is locked by another operation. Retry the operation.") from exc
        raise PersistenceFailureError(failure_message) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailureError(failure_message) from exc
    except Exception:
        db.rollback()
        raise
