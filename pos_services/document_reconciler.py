"""
pos_services.document_reconciler -- keeps document totals equal to their lines.

Responsibility:
    Recompute invoice / order / sale totals from the line items currently
    stored, append line items (always followed by a recalculation),
    record invoice payments, and apply loan payments.

Architecture position:
    Services -- imperative shell over pos_engines.document_totals and
    pos_engines.loan_balance.  Flush-only.

Invariants enforced:
    - After every line insert or delete the parent document is recomputed
      in the same transaction; totals are never maintained incrementally.
    - recalculate_invoice is idempotent.
    - Loan: paid_amount + remaining_amount == total_amount after every
      payment, and each payment is an immutable LoanPayment row.

Failure modes:
    - InvoiceNotFoundError / LineItemNotFoundError / LoanNotFoundError.
    - DocumentClosedError when editing lines of a cancelled or billed
      document.
    - InvalidPaymentAmountError, LoanNotActiveError, OverpaymentError.

Drift:
    find_invoice_drift / find_loan_drift are read-only checks for manual
    recovery.  Nothing here repairs drift automatically.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_engines.document_totals import compute_totals, derive_payment_status, line_total
from pos_engines.loan_balance import apply_payment
from pos_kernel.db.types import ZERO, round_money, to_decimal
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.values import LineItemType, LoanStatus, OrderStatus, PaymentStatus
from pos_kernel.exceptions import (
    DocumentClosedError,
    InvalidPaymentAmountError,
    InvoiceNotFoundError,
    LineItemNotFoundError,
    LoanNotActiveError,
    LoanNotFoundError,
    OverpaymentError,
)
from pos_kernel.logging_config import get_logger
from pos_kernel.models.invoice import Invoice, LineItem
from pos_kernel.models.loan import Loan, LoanPayment
from pos_kernel.services.base import BaseService

logger = get_logger("services.document_reconciler")

_CLOSED_ORDER_STATES = frozenset({OrderStatus.BILLED.value, OrderStatus.CANCELLED.value})


@dataclass(frozen=True)
class DriftReport:
    """Stored document figures next to what they should be."""

    document_id: UUID
    kind: str
    expected: dict[str, Decimal | str]
    stored: dict[str, Decimal | str]

    @property
    def mismatched_fields(self) -> tuple[str, ...]:
        return tuple(k for k in self.expected if self.expected[k] != self.stored.get(k))


class DocumentReconciler(BaseService[Invoice]):
    """
    Recomputes and persists document and loan totals.

    Non-goals:
        - Does not commit.
        - Does not touch stock.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id

    # =========================================================================
    # Invoices
    # =========================================================================

    def get_invoice(self, invoice_id: UUID, *, lock: bool = False) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if lock:
            stmt = stmt.with_for_update()
        invoice = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _line_totals(self, invoice_id: UUID) -> list[Decimal]:
        return list(
            self.session.execute(
                select(LineItem.total_price)
                .where(LineItem.invoice_id == invoice_id)
                .order_by(LineItem.position)
            ).scalars()
        )

    def _expected_totals(self, invoice: Invoice):
        return compute_totals(
            line_totals=self._line_totals(invoice.id),
            tax_rate=invoice.tax_rate,
            discount_amount=invoice.discount_fixed if invoice.discount_fixed is not None else ZERO,
            discount_percent=invoice.discount_percent,
        )

    def recalculate_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Recompute subtotal, discount, tax and total from the stored lines.

        Payment status is re-derived from amount_paid unless the document
        was cancelled.
        """
        t0 = time.monotonic()
        invoice = self.get_invoice(invoice_id, lock=True)
        totals = self._expected_totals(invoice)

        invoice.subtotal = totals.subtotal
        invoice.discount_amount = totals.discount_amount
        invoice.tax_amount = totals.tax_amount
        invoice.total_amount = totals.total_amount
        if invoice.payment_status != PaymentStatus.CANCELLED.value:
            invoice.payment_status = derive_payment_status(
                totals.total_amount, invoice.amount_paid
            ).value
        invoice.updated_by_id = self._actor_id
        self.session.flush()

        logger.info("invoice_recalculated", extra={
            "document_id": str(invoice.id),
            "document_number": invoice.document_number,
            "subtotal": totals.subtotal,
            "discount_amount": totals.discount_amount,
            "tax_amount": totals.tax_amount,
            "total_amount": totals.total_amount,
            "payment_status": invoice.payment_status,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return invoice

    def _ensure_editable(self, invoice: Invoice) -> None:
        if invoice.payment_status == PaymentStatus.CANCELLED.value:
            raise DocumentClosedError(str(invoice.id), invoice.payment_status)
        if invoice.order_status in _CLOSED_ORDER_STATES:
            raise DocumentClosedError(str(invoice.id), invoice.order_status)

    def add_line_item(
        self,
        invoice_id: UUID,
        description: str,
        item_type: LineItemType | str,
        quantity: int,
        unit_price: Decimal | str,
        *,
        product_id: UUID | None = None,
        batch_id: UUID | None = None,
        service_item_id: UUID | None = None,
        unit_cost: Decimal | None = None,
        source_document_id: UUID | None = None,
        recalculate: bool = True,
    ) -> LineItem:
        """
        Append a line and recompute the document.

        ``recalculate=False`` is for callers adding several lines in one
        event; they must call recalculate_invoice before flushing out.
        """
        invoice = self.get_invoice(invoice_id, lock=True)
        self._ensure_editable(invoice)

        price = round_money(to_decimal(unit_price))
        position = self.session.execute(
            select(func.coalesce(func.max(LineItem.position), 0))
            .where(LineItem.invoice_id == invoice_id)
        ).scalar_one() + 1

        item = LineItem(
            invoice_id=invoice_id,
            position=position,
            description=description,
            item_type=LineItemType(item_type).value,
            quantity=quantity,
            unit_price=price,
            total_price=line_total(quantity, price),
            product_id=product_id,
            batch_id=batch_id,
            service_item_id=service_item_id,
            unit_cost=unit_cost,
            source_document_id=source_document_id,
            created_by_id=self._actor_id,
        )
        self.session.add(item)
        self.session.flush()
        logger.info("line_item_added", extra={
            "document_id": str(invoice_id),
            "line_item_id": str(item.id),
            "item_type": item.item_type,
            "quantity": quantity,
            "total_price": item.total_price,
        })
        if recalculate:
            self.recalculate_invoice(invoice_id)
        return item

    def remove_line_item(self, line_item_id: UUID) -> Invoice:
        item = self.session.get(LineItem, line_item_id)
        if item is None:
            raise LineItemNotFoundError(str(line_item_id))
        invoice_id = item.invoice_id
        self._ensure_editable(self.get_invoice(invoice_id, lock=True))

        self.session.delete(item)
        self.session.flush()
        logger.info("line_item_removed", extra={
            "document_id": str(invoice_id),
            "line_item_id": str(line_item_id),
        })
        return self.recalculate_invoice(invoice_id)

    def record_invoice_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | str,
        method: str | None = None,
    ) -> Invoice:
        """amount_paid += amount, then re-derive the payment status."""
        value = round_money(to_decimal(amount))
        if value <= 0:
            raise InvalidPaymentAmountError(str(value))
        invoice = self.get_invoice(invoice_id, lock=True)
        if invoice.payment_status == PaymentStatus.CANCELLED.value:
            raise DocumentClosedError(str(invoice.id), invoice.payment_status)

        invoice.amount_paid = round_money(invoice.amount_paid + value)
        if method:
            invoice.payment_method = method
        invoice.payment_status = derive_payment_status(
            invoice.total_amount, invoice.amount_paid
        ).value
        self.session.flush()
        logger.info("invoice_payment_recorded", extra={
            "document_id": str(invoice.id),
            "amount": value,
            "amount_paid": invoice.amount_paid,
            "payment_status": invoice.payment_status,
        })
        return invoice

    def find_invoice_drift(self, invoice_id: UUID) -> DriftReport | None:
        """Report stored totals that differ from the line items; None if clean."""
        invoice = self.get_invoice(invoice_id)
        totals = self._expected_totals(invoice)
        expected = {
            "subtotal": totals.subtotal,
            "discount_amount": totals.discount_amount,
            "tax_amount": totals.tax_amount,
            "total_amount": totals.total_amount,
        }
        stored = {
            "subtotal": round_money(invoice.subtotal),
            "discount_amount": round_money(invoice.discount_amount),
            "tax_amount": round_money(invoice.tax_amount),
            "total_amount": round_money(invoice.total_amount),
        }
        report = DriftReport(invoice.id, invoice.kind, expected, stored)
        if not report.mismatched_fields:
            return None
        logger.warning("invoice_drift_detected", extra={
            "document_id": str(invoice.id),
            "fields": list(report.mismatched_fields),
        })
        return report

    # =========================================================================
    # Loans
    # =========================================================================

    def get_loan(self, loan_id: UUID, *, lock: bool = False) -> Loan:
        stmt = select(Loan).where(Loan.id == loan_id)
        if lock:
            stmt = stmt.with_for_update()
        loan = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def recalculate_loan(
        self,
        loan_id: UUID,
        new_payment_amount: Decimal | str,
        method: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
        *,
        allow_overpayment: bool = False,
    ) -> LoanPayment:
        """
        Record a payment and roll the loan balance forward.

        Preconditions:
            The loan is active or overdue; the amount is positive and,
            unless ``allow_overpayment``, not above the remaining balance.
        Postconditions:
            paid_amount + remaining_amount == total_amount; status is
            completed once remaining_amount <= 0.
        """
        amount = round_money(to_decimal(new_payment_amount))
        if amount <= 0:
            raise InvalidPaymentAmountError(str(amount))

        loan = self.get_loan(loan_id, lock=True)
        if loan.status not in (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value):
            raise LoanNotActiveError(str(loan.id), loan.status)
        if not allow_overpayment and amount > loan.remaining_amount:
            raise OverpaymentError(str(loan.id), str(amount), str(loan.remaining_amount))

        balance = apply_payment(
            total_amount=loan.total_amount,
            paid_amount=loan.paid_amount,
            payment=amount,
            status=LoanStatus(loan.status),
        )
        payment = LoanPayment(
            loan_id=loan.id,
            amount=amount,
            payment_method=method or "cash",
            payment_date=self._clock.now(),
            reference_number=reference,
            notes=notes,
            remaining_after=balance.remaining_amount,
            created_by_id=self._actor_id,
        )
        self.session.add(payment)

        loan.paid_amount = balance.paid_amount
        loan.remaining_amount = balance.remaining_amount
        loan.status = balance.status.value
        loan.updated_by_id = self._actor_id
        self.session.flush()

        logger.info("loan_payment_applied", extra={
            "loan_id": str(loan.id),
            "loan_number": loan.loan_number,
            "amount": amount,
            "paid_amount": balance.paid_amount,
            "remaining_amount": balance.remaining_amount,
            "status": balance.status.value,
        })
        return payment

    def find_loan_drift(self, loan_id: UUID) -> DriftReport | None:
        """Compare the stored balance with the sum of recorded payments."""
        loan = self.get_loan(loan_id)
        amounts = self.session.execute(
            select(LoanPayment.amount).where(LoanPayment.loan_id == loan.id)
        ).scalars()
        paid = round_money(sum(amounts, ZERO))
        total = round_money(loan.total_amount)
        expected = {"paid_amount": paid, "remaining_amount": total - paid}
        stored = {
            "paid_amount": round_money(loan.paid_amount),
            "remaining_amount": round_money(loan.remaining_amount),
        }
        report = DriftReport(loan.id, "loan", expected, stored)
        if not report.mismatched_fields:
            return None
        logger.warning("loan_drift_detected", extra={
            "loan_id": str(loan.id),
            "fields": list(report.mismatched_fields),
        })
        return report
