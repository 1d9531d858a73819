"""
SequenceService -- gap-free counters for the audit chain.

Each named counter is a single row in ``sequence_counters``.  Allocating a
value locks that row for the rest of the caller's transaction, so two
writers extending the audit chain line up behind one another instead of
both reading the same predecessor hash.

On SQLite the row lock is a no-op and the ``BEGIN IMMEDIATE`` issued by the
session factory gives the same ordering.

The service flushes, never commits.  A rolled-back transaction gives its
value back.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oa_kernel.logging_config import get_logger
from oa_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, name: str) -> int:
        """Lock ``name``'s counter, bump it and return the new value."""
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def _lock(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        # Two first writers may race to insert the row; the loser re-reads it.
        try:
            with self._session.begin_nested():
                self._session.add(SequenceCounter(name=name, current_value=0))
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
        counter = self._lock(name)
        if counter is None:
            raise RuntimeError(f"sequence counter {name!r} vanished after creation")
        return counter
