from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

_LOCK_ERROR_MARKERS = (
    "lock timeout",
    "lock_timeout",
    "lock wait timeout",
    "could not obtain lock",
    "deadlock",
    "database is locked",
    "canceling statement due to lock timeout",
)


def is_lock_error(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc) or "").lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


def _apply_lock_timeout(db: Session) -> None:
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    timeout_ms = max(0, int(settings.SHIPMENT_LOCK_TIMEOUT_MS))
    # SET LOCAL does not accept bind parameters.
    db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


@contextmanager
def unit_of_work(db: Session, *, operation: str) -> Iterator[Session]:
    """
    Run one mutating operation atomically.

    Opens a transaction, or a SAVEPOINT when the caller already holds one,
    commits/releases on success and rolls back on any exception. Lock
    contention and stale optimistic versions are reported as
    ConcurrencyConflict; every other storage error propagates unchanged.
    """
    tx_ctx = db.begin_nested() if db.in_transaction() else db.begin()
    try:
        with tx_ctx:
            _apply_lock_timeout(db)
            yield db
            db.flush()
    except OperationalError as exc:
        if not is_lock_error(exc):
            raise
        logger.warning("shipment_flow_lock_conflict operation=%s error=%s", operation, exc.orig)
        raise ConcurrencyConflict(
            message="Another request is changing the same shipment. Retry shortly.",
            details={"operation": operation},
        ) from exc
    except StaleDataError as exc:
        logger.warning("shipment_flow_stale_write operation=%s error=%s", operation, exc)
        raise ConcurrencyConflict(
            message="The shipment was modified by another request. Reload and retry.",
            details={"operation": operation},
        ) from exc
