"""
Shared helpers for module event handlers.

Used by pos_modules/*/service.py to open numbered documents and to run
the oversell pre-check before anything is written.

Architecture: Modules layer.  Imports only from pos_kernel and
pos_services.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from pos_engines.allocation import AllocationPlan
from pos_kernel.domain.clock import Clock
from pos_kernel.domain.values import DocumentKind, PaymentStatus
from pos_kernel.exceptions import InsufficientStockError
from pos_kernel.logging_config import get_logger
from pos_kernel.models.invoice import Invoice
from pos_kernel.services.sequence_service import SequenceService

logger = get_logger("modules.helpers")


def open_document(
    session: Session,
    clock: Clock,
    *,
    kind: DocumentKind,
    sequence_name: str,
    prefix: str,
    width: int,
    tax_rate: Decimal,
    booking_id: UUID | None = None,
    customer_name: str | None = None,
    location: str | None = None,
    discount_percent: Decimal | None = None,
    discount_fixed: Decimal | None = None,
    payment_method: str | None = None,
    order_status: str | None = None,
    notes: str | None = None,
    actor_id: UUID | None = None,
) -> Invoice:
    """Create an empty, numbered document and flush it."""
    number = SequenceService(session).next_document_number(sequence_name, prefix, width)
    invoice = Invoice(
        kind=kind.value,
        document_number=number,
        booking_id=booking_id,
        customer_name=customer_name,
        location=location,
        discount_percent=discount_percent,
        discount_fixed=discount_fixed,
        tax_rate=tax_rate,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=payment_method,
        order_status=order_status,
        notes=notes,
        issued_at=clock.now(),
        created_by_id=actor_id,
    )
    session.add(invoice)
    session.flush()
    logger.info("document_opened", extra={
        "document_id": str(invoice.id),
        "document_number": number,
        "kind": kind.value,
    })
    return invoice


def check_plan(plan: AllocationPlan, reject_oversell: bool) -> None:
    """Raise InsufficientStockError for a short plan when oversell is refused."""
    if plan.fulfilled or not reject_oversell:
        return
    raise InsufficientStockError(
        str(plan.product_id), plan.requested, plan.available, plan=plan
    )


def check_level(item_id: UUID, requested: int, available: int, reject_oversell: bool) -> None:
    if requested <= available or not reject_oversell:
        return
    raise InsufficientStockError(str(item_id), requested, available)
