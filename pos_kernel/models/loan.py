"""
Customer loan (goods on credit) ORM models.

total_amount is fixed when the loan is created from its items.  After
every payment: paid_amount + remaining_amount == total_amount and
paid_amount == SUM(payments.amount).  LoanPayment rows are write-once.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_kernel.db.base import TrackedBase
from pos_kernel.domain.values import LoanStatus


class Loan(TrackedBase):
    __tablename__ = "customer_loans"

    __table_args__ = (
        Index("idx_loans_status_due", "status", "due_date"),
    )

    loan_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LoanStatus.ACTIVE.value
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["LoanItem"]] = relationship(
        back_populates="loan", cascade="all, delete-orphan"
    )
    payments: Mapped[list["LoanPayment"]] = relationship(
        back_populates="loan", order_by="LoanPayment.payment_date"
    )

    def __repr__(self) -> str:
        return f"<Loan {self.loan_number} remaining={self.remaining_amount}>"


class LoanItem(TrackedBase):
    __tablename__ = "loan_items"

    __table_args__ = (
        Index("idx_loan_items_batch", "batch_id"),
    )

    loan_id: Mapped[UUID] = mapped_column(ForeignKey("customer_loans.id"), nullable=False)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("product_batches.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    loan: Mapped[Loan] = relationship(back_populates="items")


class LoanPayment(TrackedBase):
    """A payment against a loan.  Never edited or deleted once written."""

    __tablename__ = "loan_payments"

    __table_args__ = (
        Index("idx_loan_payments_loan", "loan_id", "payment_date"),
    )

    loan_id: Mapped[UUID] = mapped_column(ForeignKey("customer_loans.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False, default="cash")
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Balance snapshot after this payment was applied.
    remaining_after: Mapped[Decimal] = mapped_column(nullable=False)

    loan: Mapped[Loan] = relationship(back_populates="payments")
