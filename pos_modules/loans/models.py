"""
Customer loan DTOs (``pos_modules.loans.models``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class LoanLine:
    """Goods handed over on credit.  unit_price overrides the batch / catalogue price."""

    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class LoanSummary:
    loan_id: UUID
    loan_number: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: str
    due_date: date | None

    @property
    def is_settled(self) -> bool:
        return self.remaining_amount <= 0


@dataclass(frozen=True)
class PaymentReceipt:
    payment_id: UUID
    loan: LoanSummary
    amount: Decimal
    remaining_after: Decimal
