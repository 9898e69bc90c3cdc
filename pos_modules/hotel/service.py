"""
Hotel Service (``pos_modules.hotel.service``).

Responsibility
--------------
Event handlers for the hotel side: guest services charged to a booking,
restaurant / room-service orders, billing orders onto an invoice, the
checkout room charge and invoice payments.

Architecture
------------
Layer: **Modules** -- orchestration over StockPropagator (service item
plus linked product stock), BatchAllocator and DocumentReconciler.

Invariants
----------
- Each public method owns its transaction boundary (commit / rollback).
- Stock tracked by a service item is deducted in both ledgers under one
  reference id: the invoice line for guest services, the order document
  for orders.  Removing the line or cancelling the order restores both.
- The room charge is added to a booking's invoice at most once.
- Every line change is followed by a recalculation of its document.

Failure Modes
-------------
- BookingNotFoundError, InvoiceNotFoundError, ServiceItemNotFoundError.
- InsufficientStockError when ``stock.reject_oversell`` and either ledger
  cannot cover the quantity.
- OrderStateError for a disallowed order transition.
- LineItemNotRemovableError when a removed line is not on a guest invoice.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_config import PosPolicy, get_active_config
from pos_engines.allocation import AllocationPlan
from pos_engines.document_totals import room_nights
from pos_kernel.db.types import ZERO, round_money, to_decimal
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.values import (
    DocumentKind,
    LineItemType,
    OrderStatus,
    PaymentStatus,
)
from pos_kernel.exceptions import (
    BookingNotFoundError,
    InvoiceNotFoundError,
    LineItemNotFoundError,
    LineItemNotRemovableError,
    OrderStateError,
    ServiceItemNotFoundError,
)
from pos_kernel.logging_config import get_logger
from pos_kernel.models.hotel import Booking, ServiceMenuItem
from pos_kernel.models.invoice import Invoice, LineItem
from pos_kernel.services.sequence_service import SequenceService
from pos_modules._document_helpers import check_level, check_plan, open_document
from pos_modules.hotel.models import DocumentSummary, OrderLine, ServiceCharge
from pos_services.batch_allocator import BatchAllocator
from pos_services.document_reconciler import DocumentReconciler
from pos_services.stock_ledger import StockLedgerService
from pos_services.stock_propagator import StockPropagator

logger = get_logger("modules.hotel.service")

# Forward moves a kitchen makes on its own.  billed / cancelled are
# reached only through bill_orders() and cancel_order().
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.SERVED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.SERVED}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED}),
    OrderStatus.SERVED: frozenset(),
    OrderStatus.BILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_ORDER_STATES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY})


def _summary(invoice: Invoice) -> DocumentSummary:
    return DocumentSummary(
        invoice_id=invoice.id,
        document_number=invoice.document_number,
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        tax_amount=invoice.tax_amount,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
        payment_status=invoice.payment_status,
        order_status=invoice.order_status,
    )


class HotelService:
    """
    Hotel event handler.

    Contract
    --------
    Every public method either commits all of its writes (lines, stock
    movements, totals) or none of them.
    """

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
        self._propagator = StockPropagator(session, self._ledger)
        self._reconciler = DocumentReconciler(session, self._clock, actor_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get_booking(self, booking_id: UUID) -> Booking:
        booking = self._session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(str(booking_id))
        return booking

    def _lock_service_item(self, service_item_id: UUID) -> ServiceMenuItem:
        item = self._session.execute(
            select(ServiceMenuItem)
            .where(ServiceMenuItem.id == service_item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ServiceItemNotFoundError(str(service_item_id))
        return item

    def _get_order(self, order_id: UUID) -> Invoice:
        order = self._reconciler.get_invoice(order_id, lock=True)
        if order.kind != DocumentKind.HOTEL_ORDER.value:
            raise InvoiceNotFoundError(str(order_id))
        return order

    def _booking_invoice(self, booking: Booking) -> Invoice:
        """The booking's open guest invoice, created on first use."""
        invoice = self._session.execute(
            select(Invoice)
            .where(
                Invoice.booking_id == booking.id,
                Invoice.kind == DocumentKind.HOTEL_INVOICE.value,
                Invoice.payment_status != PaymentStatus.CANCELLED.value,
            )
            .order_by(Invoice.issued_at, Invoice.document_number)
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()
        if invoice is not None:
            return invoice
        numbering = self._policy.numbering
        return open_document(
            self._session,
            self._clock,
            kind=DocumentKind.HOTEL_INVOICE,
            sequence_name=SequenceService.INVOICE,
            prefix=numbering.invoice_prefix,
            width=numbering.width,
            tax_rate=self._policy.tax.invoice_rate,
            booking_id=booking.id,
            customer_name=booking.guest_name,
            actor_id=self._actor_id,
        )

    def _check_service_stock(self, item: ServiceMenuItem, quantity: int) -> AllocationPlan | None:
        """Oversell pre-check on both ledgers; returns the linked product's plan."""
        if not item.track_stock:
            return None
        reject = self._policy.stock.reject_oversell
        check_level(item.id, quantity, item.stock_quantity, reject)
        if item.product_id is None:
            return None
        plan = self._allocator.allocate(item.product_id, quantity, lock=True)
        check_plan(plan, reject)
        return plan

    # =========================================================================
    # Guest services
    # =========================================================================

    def consume_service(
        self,
        booking_id: UUID,
        service_item_id: UUID,
        quantity: int,
        unit_price: Decimal | str | None = None,
    ) -> ServiceCharge:
        """
        Charge a service to a booking and deduct any stock it tracks.

        Postconditions:
            - A ``service`` line on the booking's invoice, totals recomputed.
            - If the item tracks stock: one ``out`` movement on the item
              and, when linked, FEFO ``out`` movements on the product, all
              referencing the new line.
        """
        try:
            booking = self._get_booking(booking_id)
            item = self._lock_service_item(service_item_id)
            plan = self._check_service_stock(item, quantity)
            invoice = self._booking_invoice(booking)

            line = self._reconciler.add_line_item(
                invoice.id,
                item.name,
                LineItemType.SERVICE,
                quantity,
                item.price if unit_price is None else unit_price,
                service_item_id=item.id,
                product_id=item.product_id,
            )
            propagation = self._propagator.deduct_linked_stock(
                item.id,
                quantity,
                line.id,
                f"Guest service {item.name} for booking {booking.booking_reference}",
                product_plan=plan,
            )
            invoice = self._reconciler.get_invoice(invoice.id)
            charge = ServiceCharge(
                invoice_id=invoice.id,
                line_item_id=line.id,
                total_amount=invoice.total_amount,
                propagation=propagation,
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("guest_service_consumed", extra={
            "booking_id": str(booking_id),
            "service_item_id": str(service_item_id),
            "quantity": quantity,
            "document_id": str(charge.invoice_id),
            "line_item_id": str(charge.line_item_id),
        })
        return charge

    def remove_service_line(self, line_item_id: UUID) -> DocumentSummary:
        """
        Remove a guest service line, put its stock back and recompute.

        Only lines on a guest invoice qualify. Order lines share their
        order's stock reference and go back through cancel_order().
        """
        try:
            line = self._session.get(LineItem, line_item_id)
            if line is None:
                raise LineItemNotFoundError(str(line_item_id))
            kind = self._session.get(Invoice, line.invoice_id).kind
            if kind != DocumentKind.HOTEL_INVOICE.value:
                raise LineItemNotRemovableError(str(line_item_id), kind)
            self._propagator.restore_linked_stock(
                line_item_id, f"Guest service removed: {line.description}"
            )
            invoice = self._reconciler.remove_line_item(line_item_id)
            summary = _summary(invoice)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("guest_service_removed", extra={
            "line_item_id": str(line_item_id),
            "document_id": str(summary.invoice_id),
        })
        return summary

    # =========================================================================
    # Orders
    # =========================================================================

    def place_order(
        self,
        items: list[OrderLine],
        *,
        booking_id: UUID | None = None,
        customer_name: str | None = None,
        location: str | None = None,
        discount_percent: Decimal | str | None = None,
        notes: str | None = None,
    ) -> DocumentSummary:
        """
        Place a restaurant / room-service order.

        Stock for every tracked item is deducted now (both ledgers), under
        the order's id, and restored if the order is cancelled.
        """
        if not items:
            raise ValueError("An order needs at least one item")

        numbering = self._policy.numbering
        try:
            if booking_id is not None:
                booking = self._get_booking(booking_id)
                customer_name = customer_name or booking.guest_name

            order = open_document(
                self._session,
                self._clock,
                kind=DocumentKind.HOTEL_ORDER,
                sequence_name=SequenceService.ORDER,
                prefix=numbering.order_prefix,
                width=numbering.width,
                tax_rate=self._policy.tax.order_rate,
                booking_id=booking_id,
                customer_name=customer_name,
                location=location,
                discount_percent=(
                    None if discount_percent is None else to_decimal(discount_percent)
                ),
                order_status=OrderStatus.PENDING.value,
                notes=notes,
                actor_id=self._actor_id,
            )

            for entry in items:
                item = self._lock_service_item(entry.service_item_id)
                plan = self._check_service_stock(item, entry.quantity)
                self._reconciler.add_line_item(
                    order.id,
                    item.name,
                    LineItemType.SERVICE,
                    entry.quantity,
                    item.price,
                    service_item_id=item.id,
                    product_id=item.product_id,
                    recalculate=False,
                )
                self._propagator.deduct_linked_stock(
                    item.id,
                    entry.quantity,
                    order.id,
                    f"Order {order.document_number}",
                    product_plan=plan,
                )

            summary = _summary(self._reconciler.recalculate_invoice(order.id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("order_placed", extra={
            "document_id": str(summary.invoice_id),
            "document_number": summary.document_number,
            "items": len(items),
            "total_amount": summary.total_amount,
        })
        return summary

    def update_order_status(self, order_id: UUID, status: OrderStatus | str) -> DocumentSummary:
        target = OrderStatus(status)
        try:
            order = self._get_order(order_id)
            current = OrderStatus(order.order_status)
            if target not in ORDER_TRANSITIONS[current]:
                raise OrderStateError(str(order_id), current.value, f"move to {target.value}")
            order.order_status = target.value
            order.updated_by_id = self._actor_id
            self._session.flush()
            summary = _summary(order)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("order_status_changed", extra={
            "document_id": str(order_id),
            "from_status": current.value,
            "to_status": target.value,
        })
        return summary

    def cancel_order(self, order_id: UUID, reason: str | None = None) -> DocumentSummary:
        """Cancel an order that has not been served or billed and restore its stock."""
        try:
            order = self._get_order(order_id)
            current = OrderStatus(order.order_status)
            if current not in CANCELLABLE_ORDER_STATES:
                raise OrderStateError(str(order_id), current.value, "cancel")
            restored = self._propagator.restore_linked_stock(
                order.id, reason or f"Order {order.document_number} cancelled"
            )
            order.order_status = OrderStatus.CANCELLED.value
            order.payment_status = PaymentStatus.CANCELLED.value
            order.updated_by_id = self._actor_id
            self._session.flush()
            summary = _summary(order)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("order_cancelled", extra={
            "document_id": str(order_id),
            "restored_movements": len(restored),
        })
        return summary

    def bill_orders(
        self,
        order_ids: list[UUID],
        *,
        booking_id: UUID | None = None,
        customer_name: str | None = None,
        payment_method: str | None = None,
    ) -> DocumentSummary:
        """
        Copy the lines of several orders onto one invoice.

        With ``booking_id`` the booking's guest invoice receives them;
        otherwise a new walk-in invoice is opened.  Each order's discount
        is carried as a fixed discount on the invoice and the orders are
        marked billed.
        """
        if not order_ids:
            raise ValueError("Nothing to bill")

        numbering = self._policy.numbering
        try:
            orders = [self._get_order(order_id) for order_id in order_ids]
            for order in orders:
                if order.order_status in (OrderStatus.BILLED.value, OrderStatus.CANCELLED.value):
                    raise OrderStateError(str(order.id), order.order_status, "bill")

            if booking_id is not None:
                invoice = self._booking_invoice(self._get_booking(booking_id))
            else:
                invoice = open_document(
                    self._session,
                    self._clock,
                    kind=DocumentKind.HOTEL_INVOICE,
                    sequence_name=SequenceService.INVOICE,
                    prefix=numbering.invoice_prefix,
                    width=numbering.width,
                    tax_rate=self._policy.tax.order_rate,
                    customer_name=customer_name or orders[0].customer_name,
                    payment_method=payment_method,
                    actor_id=self._actor_id,
                )

            carried_discount = ZERO
            for order in orders:
                for item in order.items:
                    self._reconciler.add_line_item(
                        invoice.id,
                        item.description,
                        LineItemType.ORDER,
                        item.quantity,
                        item.unit_price,
                        product_id=item.product_id,
                        service_item_id=item.service_item_id,
                        source_document_id=order.id,
                        recalculate=False,
                    )
                carried_discount += order.discount_amount
                order.order_status = OrderStatus.BILLED.value
                order.billed_invoice_id = invoice.id
                order.updated_by_id = self._actor_id

            if carried_discount > 0:
                invoice.discount_fixed = round_money(
                    (invoice.discount_fixed or ZERO) + carried_discount
                )
            self._session.flush()
            summary = _summary(self._reconciler.recalculate_invoice(invoice.id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("orders_billed", extra={
            "document_id": str(summary.invoice_id),
            "document_number": summary.document_number,
            "orders": [str(o) for o in order_ids],
            "total_amount": summary.total_amount,
        })
        return summary

    # =========================================================================
    # Checkout and payment
    # =========================================================================

    def generate_checkout_invoice(self, booking_id: UUID) -> DocumentSummary:
        """
        Add the room charge (nights x nightly rate) to the booking's
        invoice, once, and return the recomputed totals.
        """
        try:
            booking = self._get_booking(booking_id)
            invoice = self._booking_invoice(booking)
            has_room_line = self._session.execute(
                select(LineItem.id).where(
                    LineItem.invoice_id == invoice.id,
                    LineItem.item_type == LineItemType.ROOM.value,
                )
            ).first() is not None

            if has_room_line:
                invoice = self._reconciler.recalculate_invoice(invoice.id)
            else:
                nights = room_nights(booking.check_in_date, booking.check_out_date)
                room = booking.room
                self._reconciler.add_line_item(
                    invoice.id,
                    f"Room {room.room_number} - {nights} night(s)",
                    LineItemType.ROOM,
                    nights,
                    room.price_per_night,
                )
                invoice = self._reconciler.get_invoice(invoice.id)
            summary = _summary(invoice)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("checkout_invoice_generated", extra={
            "booking_id": str(booking_id),
            "document_id": str(summary.invoice_id),
            "room_line_added": not has_room_line,
            "total_amount": summary.total_amount,
        })
        return summary

    def process_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | str,
        method: str = "cash",
    ) -> DocumentSummary:
        """Record a payment on an invoice and on its booking, if any."""
        try:
            invoice = self._reconciler.record_invoice_payment(invoice_id, amount, method)
            if invoice.booking_id is not None:
                booking = self._get_booking(invoice.booking_id)
                booking.paid_amount = round_money(
                    booking.paid_amount + round_money(to_decimal(amount))
                )
                self._session.flush()
            summary = _summary(invoice)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return summary
