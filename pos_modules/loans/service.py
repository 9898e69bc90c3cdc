"""
Customer Loan Service (``pos_modules.loans.service``).

Responsibility
--------------
Goods sold on credit: a loan takes products out of stock (FEFO) at a
fixed total, then accumulates payments until it is settled.  Also marks
loans overdue by due date and cancels unpaid loans.

Architecture
------------
Layer: **Modules** -- orchestration over BatchAllocator,
StockLedgerService and DocumentReconciler.recalculate_loan.

Invariants
----------
- Each public method owns its transaction boundary (commit / rollback).
- paid_amount + remaining_amount == total_amount after every payment.
- total_amount is fixed at creation.
- Payments are immutable LoanPayment rows.

Failure Modes
-------------
- InsufficientStockError on creation (``stock.reject_oversell``).
- LoanNotFoundError, LoanNotActiveError, InvalidPaymentAmountError,
  OverpaymentError (unless ``loans.allow_overpayment``).
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_config import PosPolicy, get_active_config
from pos_engines.document_totals import line_total
from pos_engines.loan_balance import is_overdue, opening_balance
from pos_kernel.db.types import ZERO, to_decimal
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.values import LoanStatus
from pos_kernel.exceptions import LoanNotActiveError
from pos_kernel.logging_config import get_logger
from pos_kernel.models.loan import Loan, LoanItem
from pos_kernel.models.product import Product
from pos_kernel.services.sequence_service import SequenceService
from pos_modules._document_helpers import check_plan
from pos_modules.loans.models import LoanLine, LoanSummary, PaymentReceipt
from pos_services.batch_allocator import BatchAllocator
from pos_services.document_reconciler import DocumentReconciler
from pos_services.stock_ledger import StockLedgerService

logger = get_logger("modules.loans.service")

_OPEN_STATES = (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)


def _summary(loan: Loan) -> LoanSummary:
    return LoanSummary(
        loan_id=loan.id,
        loan_number=loan.loan_number,
        total_amount=loan.total_amount,
        paid_amount=loan.paid_amount,
        remaining_amount=loan.remaining_amount,
        status=loan.status,
        due_date=loan.due_date,
    )


class LoanService:
    """Customer credit event handler."""

    def __init__(
        self,
        session: Session,
        policy: PosPolicy | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._policy = policy or get_active_config()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._allocator = BatchAllocator(session)
        self._ledger = StockLedgerService(session, self._clock, actor_id)
        self._reconciler = DocumentReconciler(session, self._clock, actor_id)

    def create_loan(
        self,
        customer_name: str,
        lines: list[LoanLine],
        *,
        customer_phone: str | None = None,
        due_date: date | None = None,
        interest_rate: Decimal | str = ZERO,
        notes: str | None = None,
    ) -> LoanSummary:
        """
        Hand goods over on credit.

        Postconditions:
            - Stock deducted FEFO, one LoanItem per batch consumed.
            - total_amount = SUM(items), remaining_amount = total_amount.
            - due_date defaults to today + ``loans.default_term_days``.
        """
        if not lines:
            raise ValueError("A loan needs at least one line")

        numbering = self._policy.numbering
        term = self._policy.loans.default_term_days
        if due_date is None and term is not None:
            due_date = self._clock.today() + timedelta(days=term)

        try:
            number = SequenceService(self._session).next_document_number(
                SequenceService.LOAN, numbering.loan_prefix, numbering.width
            )
            loan = Loan(
                loan_number=number,
                customer_name=customer_name,
                customer_phone=customer_phone,
                total_amount=ZERO,
                paid_amount=ZERO,
                remaining_amount=ZERO,
                interest_rate=to_decimal(interest_rate),
                status=LoanStatus.ACTIVE.value,
                due_date=due_date,
                issued_at=self._clock.now(),
                notes=notes,
                created_by_id=self._actor_id,
            )
            self._session.add(loan)
            self._session.flush()

            total = ZERO
            for line in lines:
                total += self._take_goods(loan, line)

            balance = opening_balance(total)
            loan.total_amount = balance.total_amount
            loan.remaining_amount = balance.remaining_amount
            self._session.flush()
            summary = _summary(loan)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("loan_created", extra={
            "loan_id": str(summary.loan_id),
            "loan_number": summary.loan_number,
            "total_amount": summary.total_amount,
            "due_date": summary.due_date,
        })
        return summary

    def _take_goods(self, loan: Loan, line: LoanLine) -> Decimal:
        plan = self._allocator.allocate(line.product_id, line.quantity, lock=True)
        check_plan(plan, self._policy.stock.reject_oversell)
        self._ledger.consume(
            line.product_id, line.quantity, f"Loan {loan.loan_number}", loan.id, plan=plan
        )
        product = self._session.get(Product, line.product_id)

        # (batch_id, quantity, price) per loan item
        parts: list[tuple[UUID | None, int, Decimal]] = []
        if plan.is_batched:
            for allocation in plan.allocations:
                price = line.unit_price
                if price is None:
                    price = allocation.selling_price or product.selling_price
                parts.append((allocation.batch_id, allocation.quantity, price))
            if plan.allocated < line.quantity:
                parts.append((None, line.quantity - plan.allocated,
                              line.unit_price if line.unit_price is not None else product.selling_price))
        else:
            parts.append((None, line.quantity,
                          line.unit_price if line.unit_price is not None else product.selling_price))

        subtotal = ZERO
        for batch_id, quantity, price in parts:
            total_price = line_total(quantity, to_decimal(price))
            self._session.add(LoanItem(
                loan_id=loan.id,
                product_id=product.id,
                batch_id=batch_id,
                quantity=quantity,
                unit_price=to_decimal(price),
                total_price=total_price,
                created_by_id=self._actor_id,
            ))
            subtotal += total_price
        return subtotal

    def record_payment(
        self,
        loan_id: UUID,
        amount: Decimal | str,
        method: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> PaymentReceipt:
        """Apply a customer payment to a loan."""
        loans = self._policy.loans
        try:
            payment = self._reconciler.recalculate_loan(
                loan_id,
                amount,
                method or loans.default_payment_method,
                reference,
                notes,
                allow_overpayment=loans.allow_overpayment,
            )
            receipt = PaymentReceipt(
                payment_id=payment.id,
                loan=_summary(self._reconciler.get_loan(loan_id)),
                amount=payment.amount,
                remaining_after=payment.remaining_after,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return receipt

    def mark_overdue(self, today: date | None = None) -> list[LoanSummary]:
        """Flag active loans whose due date has passed."""
        today = today or self._clock.today()
        try:
            candidates = self._session.execute(
                select(Loan)
                .where(Loan.status == LoanStatus.ACTIVE.value, Loan.due_date.is_not(None))
                .with_for_update()
            ).scalars().all()
            flagged = []
            for loan in candidates:
                if is_overdue(loan.due_date, today, LoanStatus(loan.status)):
                    loan.status = LoanStatus.OVERDUE.value
                    loan.updated_by_id = self._actor_id
                    flagged.append(loan)
            self._session.flush()
            summaries = [_summary(loan) for loan in flagged]
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        if summaries:
            logger.info("loans_marked_overdue", extra={
                "count": len(summaries),
                "as_of": today,
            })
        return summaries

    def cancel_loan(self, loan_id: UUID, reason: str | None = None) -> LoanSummary:
        """
        Cancel an open loan and put its goods back in stock.

        Payments already taken stay on record; they are immutable.
        """
        try:
            loan = self._reconciler.get_loan(loan_id, lock=True)
            if loan.status not in _OPEN_STATES:
                raise LoanNotActiveError(str(loan.id), loan.status)
            restored = self._ledger.compensate_reference(
                loan.id, reason or f"Loan {loan.loan_number} cancelled"
            )
            loan.status = LoanStatus.CANCELLED.value
            loan.updated_by_id = self._actor_id
            self._session.flush()
            summary = _summary(loan)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("loan_cancelled", extra={
            "loan_id": str(loan_id),
            "restored_movements": len(restored),
        })
        return summary
