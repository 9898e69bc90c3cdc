"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock movement trail and the loan payment history are the only
evidence of how a quantity or a balance got to where it is.  Editing or
deleting one of those rows silently rewrites history, so both are
write-once.  Corrections are made with NEW rows (a compensating movement,
an adjustment) that leave a visible trail.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |                                               BatchReferencedError
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity         | When Immutable                       | Why
---------------|--------------------------------------|---------------------------
StockMovement  | ALWAYS (from creation)               | Stock audit trail
LoanPayment    | ALWAYS (from creation)               | Sum of payments == paid
Batch          | Delete blocked while referenced      | Sale lines, loan items and
               | by movements, sale lines, loan items | movements point at it

Bulk ``update()`` / ``delete()`` statements bypass mapper events; the kernel
never issues those against the protected tables.

===============================================================================
USAGE
===============================================================================

Called by create_tables() and by the test harness:

    from pos_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, exists, select

from pos_kernel.exceptions import BatchReferencedError, ImmutabilityViolationError
from pos_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_stock_movement_immutability(mapper, connection, target):
    """Stock movements are append-only."""
    _block(
        "StockMovement",
        str(target.id),
        "UPDATE",
        "Stock movements are immutable; record a compensating movement instead",
    )


def _check_stock_movement_delete(mapper, connection, target):
    _block(
        "StockMovement",
        str(target.id),
        "DELETE",
        "Stock movements cannot be deleted",
    )


def _check_loan_payment_immutability(mapper, connection, target):
    _block(
        "LoanPayment",
        str(target.id),
        "UPDATE",
        "Loan payments are immutable once recorded",
    )


def _check_loan_payment_delete(mapper, connection, target):
    _block(
        "LoanPayment",
        str(target.id),
        "DELETE",
        "Loan payments cannot be deleted",
    )


def _batch_is_referenced(connection, batch_id) -> bool:
    """Check whether any movement, sale line or loan item points at a batch."""
    from pos_kernel.models.invoice import LineItem
    from pos_kernel.models.loan import LoanItem
    from pos_kernel.models.stock_movement import StockMovement

    query = select(
        exists().where(StockMovement.batch_id == batch_id)
        | exists().where(LineItem.batch_id == batch_id)
        | exists().where(LoanItem.batch_id == batch_id)
    )
    return bool(connection.execute(query).scalar())


def _check_batch_delete(mapper, connection, target):
    """Batches with history are exhausted, never deleted."""
    if _batch_is_referenced(connection, target.id):
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Batch",
                "entity_id": str(target.id),
                "operation": "DELETE",
                "reason": "batch_has_references",
            },
        )
        raise BatchReferencedError(batch_id=str(target.id))


def _listeners():
    from pos_kernel.models.loan import LoanPayment
    from pos_kernel.models.product import Batch
    from pos_kernel.models.stock_movement import StockMovement

    return [
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (LoanPayment, "before_update", _check_loan_payment_immutability),
        (LoanPayment, "before_delete", _check_loan_payment_delete),
        (Batch, "before_delete", _check_batch_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate the rules on
    purpose.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
