"""
Invoice and LineItem ORM models.

One table holds every monetary document with line items: retail sales,
hotel guest invoices and hotel restaurant/room-service orders.  Totals
are derived fields owned by DocumentReconciler.recalculate_invoice and
must equal what the current line items imply.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_kernel.db.base import TrackedBase
from pos_kernel.domain.values import PaymentStatus
from pos_kernel.models.hotel import Booking


class Invoice(TrackedBase):
    """
    A monetary document.

    Invariants (after every recalculation):
        subtotal     = SUM(items.total_price)
        tax_amount   = (subtotal - discount_amount) * tax_rate
        total_amount = subtotal - discount_amount + tax_amount
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index("idx_invoices_kind_status", "kind", "payment_status"),
        Index("idx_invoices_booking", "booking_id"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    document_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("hotel_bookings.id"), nullable=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    # Requested discount: a percentage of the subtotal or a fixed amount.
    # discount_amount is the effective discount derived on recalculation.
    discount_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_fixed: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)

    order_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    billed_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    booking: Mapped[Booking | None] = relationship()
    items: Mapped[list["LineItem"]] = relationship(
        back_populates="invoice",
        foreign_keys="LineItem.invoice_id",
        order_by="LineItem.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.document_number} total={self.total_amount}>"


class LineItem(TrackedBase):
    """One line on a document.  total_price = quantity * unit_price."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        Index("idx_invoice_items_invoice", "invoice_id", "position"),
        Index("idx_invoice_items_batch", "batch_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("products.id"), nullable=True
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("product_batches.id"), nullable=True
    )
    service_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("hotel_service_menu.id"), nullable=True
    )
    # Cost basis of the batch the units came from, for margin reporting.
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    # Set when the line was copied from a hotel order being billed.
    source_document_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )

    invoice: Mapped[Invoice] = relationship(
        back_populates="items", foreign_keys=[invoice_id]
    )

    def __repr__(self) -> str:
        return f"<LineItem {self.description} {self.quantity}x{self.unit_price}>"
