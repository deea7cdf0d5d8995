"""Atomic unit wrapping an admission decision and the write that follows it."""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from booking.errors import InternalError, TransactionCancelled

logger = logging.getLogger(__name__)

# Execution option naming the lock wait budget; read by the engine "begin"
# listeners in db.session.
LOCK_TIMEOUT_OPTION = "lock_timeout_ms"


class AdmissionTransaction:
    def __init__(
        self,
        session: Session,
        *,
        timeout_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.session = session
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None
        self._cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() > self._deadline

    def remaining_ms(self) -> Optional[int]:
        if self._deadline is None:
            return None
        return max(1, math.ceil((self._deadline - time.monotonic()) * 1000))

    def checkpoint(self) -> None:
        """Raise if the caller gave up on this transaction."""
        if self.cancelled:
            raise TransactionCancelled("Transaction was cancelled by the caller.")
        if self.expired:
            raise TransactionCancelled("Transaction exceeded its time budget.")


@contextmanager
def transaction(
    session_factory: sessionmaker,
    *,
    timeout_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[AdmissionTransaction]:
    """Run fetch, count, decide and write as one unit.

    Any exception raised inside the block, a rejection included, rolls the
    whole unit back. With a ``timeout_seconds`` budget the database stops
    waiting for locks once the budget is spent. Cancellation is checked
    immediately before commit and a cancelled transaction is never committed.
    Storage failures are logged and re-raised as ``InternalError``.
    """
    with session_factory() as db:
        tx = AdmissionTransaction(db, timeout_seconds=timeout_seconds, cancel_event=cancel_event)
        db.begin()
        try:
            remaining_ms = tx.remaining_ms()
            if remaining_ms is not None:
                db.connection(execution_options={LOCK_TIMEOUT_OPTION: remaining_ms})
            yield tx
            tx.checkpoint()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Transaction rolled back after storage failure")
            raise InternalError() from exc
        except BaseException:
            db.rollback()
            raise
