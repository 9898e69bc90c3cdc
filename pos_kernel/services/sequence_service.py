"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing numbers for document numbers
    (INV-000001, ORD-..., SAL-..., LN-...) and for the ordering key of
    stock movements.  Uses a counter table with ``SELECT ... FOR UPDATE``;
    the max-plus-one query pattern is never used.

Invariants enforced:
    - Monotonic per sequence name.
    - Transactional: a rolled-back transaction returns its numbers.

Failure modes:
    - IntegrityError on a concurrent first use of a sequence name is
      handled with a savepoint and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_kernel.logging_config import get_logger
from pos_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``; caller controls boundaries.
    """

    STOCK_MOVEMENT = "stock_movement"
    INVOICE = "invoice"
    ORDER = "hotel_order"
    SALE = "sale"
    LOAN = "loan"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the named counter (creating it on first use), increment it
        and return the new value.

        Postconditions:
            Returns an integer > 0, strictly greater than any value
            previously returned for this name.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(self, sequence_name: str, prefix: str, width: int = 6) -> str:
        """Next formatted document number, e.g. ``INV-000042``."""
        value = self.next_value(sequence_name)
        return f"{prefix}-{value:0{width}d}"

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
