"""
Module: pos_kernel.selectors.document_selector
Responsibility: Read-only views of invoices, orders, sales and loans.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns frozen DTOs.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from pos_engines.stock_summary import line_margin
from pos_kernel.db.types import ZERO
from pos_kernel.domain.values import DocumentKind, LoanStatus
from pos_kernel.models.invoice import Invoice, LineItem
from pos_kernel.models.loan import Loan
from pos_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LineItemDTO:
    id: UUID
    position: int
    description: str
    item_type: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_id: UUID | None
    batch_id: UUID | None
    service_item_id: UUID | None
    unit_cost: Decimal | None
    source_document_id: UUID | None

    @property
    def margin(self) -> Decimal | None:
        return line_margin(self.quantity, self.unit_price, self.unit_cost)


@dataclass(frozen=True)
class InvoiceDTO:
    id: UUID
    kind: str
    document_number: str
    booking_id: UUID | None
    customer_name: str | None
    subtotal: Decimal
    discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    payment_status: str
    order_status: str | None
    issued_at: datetime
    items: tuple[LineItemDTO, ...] = ()

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid


@dataclass(frozen=True)
class LoanDTO:
    id: UUID
    loan_number: str
    customer_name: str
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: str
    due_date: date | None
    payment_count: int


def _line_dto(item: LineItem) -> LineItemDTO:
    return LineItemDTO(
        id=item.id,
        position=item.position,
        description=item.description,
        item_type=item.item_type,
        quantity=item.quantity,
        unit_price=item.unit_price,
        total_price=item.total_price,
        product_id=item.product_id,
        batch_id=item.batch_id,
        service_item_id=item.service_item_id,
        unit_cost=item.unit_cost,
        source_document_id=item.source_document_id,
    )


def _invoice_dto(invoice: Invoice, with_items: bool = True) -> InvoiceDTO:
    return InvoiceDTO(
        id=invoice.id,
        kind=invoice.kind,
        document_number=invoice.document_number,
        booking_id=invoice.booking_id,
        customer_name=invoice.customer_name,
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        tax_rate=invoice.tax_rate,
        tax_amount=invoice.tax_amount,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
        payment_status=invoice.payment_status,
        order_status=invoice.order_status,
        issued_at=invoice.issued_at,
        items=tuple(_line_dto(i) for i in invoice.items) if with_items else (),
    )


class DocumentSelector(BaseSelector[Invoice]):
    """Invoice, order and loan read models."""

    def get_invoice(self, invoice_id: UUID) -> InvoiceDTO | None:
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            return None
        self.session.refresh(invoice, ["items"])
        return _invoice_dto(invoice)

    def invoice_for_booking(self, booking_id: UUID) -> InvoiceDTO | None:
        """The guest invoice of a booking, if one was opened."""
        invoice = self.session.execute(
            select(Invoice)
            .where(
                Invoice.booking_id == booking_id,
                Invoice.kind == DocumentKind.HOTEL_INVOICE.value,
            )
            .order_by(Invoice.issued_at)
            .limit(1)
        ).scalar_one_or_none()
        return self.get_invoice(invoice.id) if invoice else None

    def orders_for_booking(self, booking_id: UUID) -> list[InvoiceDTO]:
        rows = self.session.execute(
            select(Invoice)
            .where(
                Invoice.booking_id == booking_id,
                Invoice.kind == DocumentKind.HOTEL_ORDER.value,
            )
            .order_by(Invoice.document_number)
        ).scalars()
        return [_invoice_dto(o, with_items=False) for o in rows]

    def sale_margin(self, invoice_id: UUID) -> Decimal:
        """Gross profit of a sale: SUM((unit_price - unit_cost) * quantity)."""
        items = self.session.execute(
            select(LineItem).where(LineItem.invoice_id == invoice_id)
        ).scalars()
        margins = (_line_dto(i).margin for i in items)
        return sum((m for m in margins if m is not None), ZERO)

    def loans_by_status(self, status: LoanStatus | str | None = None) -> list[LoanDTO]:
        stmt = select(Loan).order_by(Loan.loan_number)
        if status is not None:
            stmt = stmt.where(Loan.status == LoanStatus(status).value)
        return [
            LoanDTO(
                id=loan.id,
                loan_number=loan.loan_number,
                customer_name=loan.customer_name,
                total_amount=loan.total_amount,
                paid_amount=loan.paid_amount,
                remaining_amount=loan.remaining_amount,
                status=loan.status,
                due_date=loan.due_date,
                payment_count=len(loan.payments),
            )
            for loan in self.session.execute(stmt).scalars()
        ]
