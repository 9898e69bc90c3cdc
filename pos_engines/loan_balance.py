"""
pos_engines.loan_balance -- customer loan balance after a payment.

Invariants enforced:
    - paid + remaining == total, always.
    - status becomes completed as soon as remaining <= 0; otherwise the
      current status (active / overdue) is kept.
    - Payments must be strictly positive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.db.types import ZERO, round_money, to_decimal
from pos_kernel.domain.values import LoanStatus


@dataclass(frozen=True, slots=True)
class LoanBalance:
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: LoanStatus

    @property
    def is_settled(self) -> bool:
        return self.remaining_amount <= ZERO


def opening_balance(total_amount: Decimal) -> LoanBalance:
    total = round_money(to_decimal(total_amount))
    if total <= 0:
        raise ValueError(f"Loan total must be positive, got {total}")
    return LoanBalance(
        total_amount=total,
        paid_amount=ZERO,
        remaining_amount=total,
        status=LoanStatus.ACTIVE,
    )


@traced_engine(
    "loan_balance",
    "1.0",
    fingerprint_fields=("total_amount", "paid_amount", "payment", "status"),
)
def apply_payment(
    *,
    total_amount: Decimal,
    paid_amount: Decimal,
    payment: Decimal,
    status: LoanStatus = LoanStatus.ACTIVE,
) -> LoanBalance:
    """Balance after ``payment`` is added to ``paid_amount``."""
    amount = round_money(to_decimal(payment))
    if amount <= 0:
        raise ValueError(f"Payment must be positive, got {amount}")

    total = round_money(to_decimal(total_amount))
    paid = round_money(to_decimal(paid_amount)) + amount
    remaining = total - paid
    new_status = LoanStatus.COMPLETED if remaining <= 0 else LoanStatus(status)
    return LoanBalance(
        total_amount=total,
        paid_amount=paid,
        remaining_amount=remaining,
        status=new_status,
    )


def is_overdue(due_date: date | None, today: date, status: LoanStatus) -> bool:
    """An active loan past its due date."""
    return (
        due_date is not None
        and LoanStatus(status) is LoanStatus.ACTIVE
        and today > due_date
    )
