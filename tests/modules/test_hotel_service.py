"""
Tests for the hotel event handlers.

Covers:
- Guest services charged to the booking invoice, with linked stock
- Orders: placement, status flow, cancellation, billing
- Checkout room charge
- Payments
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from pos_config import StockPolicy
from pos_kernel.domain.values import EntityKind, LineItemType, OrderStatus, PaymentStatus
from pos_kernel.exceptions import (
    BookingNotFoundError,
    InsufficientStockError,
    LineItemNotRemovableError,
    OrderStateError,
)
from pos_kernel.models.invoice import Invoice, LineItem
from pos_kernel.models.stock_movement import StockMovement
from pos_modules.hotel import HotelService, OrderLine


@pytest.fixture
def hotel(session, policy, deterministic_clock, test_actor_id):
    return HotelService(session, policy, deterministic_clock, test_actor_id)


def _lines(session, invoice_id):
    return session.execute(
        select(LineItem).where(LineItem.invoice_id == invoice_id).order_by(LineItem.position)
    ).scalars().all()


class TestGuestServices:
    def test_untracked_service_adds_line_only(self, session, hotel, make_booking, make_service_item):
        booking = make_booking()
        item = make_service_item(name="Laundry", price="5.00")

        charge = hotel.consume_service(booking.id, item.id, 2)

        assert charge.propagation is None
        assert charge.total_amount == Decimal("11.80")
        invoice = session.get(Invoice, charge.invoice_id)
        assert invoice.document_number == "INV-000001"
        assert invoice.booking_id == booking.id
        assert _count_movements(session) == 0

    def test_tracked_service_deducts_both_ledgers(
        self, session, hotel, make_booking, make_product, make_batch, make_service_item
    ):
        booking = make_booking()
        product = make_product(name="Beer")
        batch = make_batch(product, 10, date(2024, 2, 1))
        item = make_service_item(name="Minibar Beer", track_stock=True, stock_quantity=5, product=product)

        charge = hotel.consume_service(booking.id, item.id, 2)
        session.refresh(item)
        session.refresh(batch)

        assert item.stock_quantity == 3
        assert batch.quantity == 8
        refs = {m.reference_id for m in charge.propagation.movements}
        assert refs == {str(charge.line_item_id)}

    def test_services_share_the_booking_invoice(self, hotel, make_booking, make_service_item):
        booking = make_booking()
        item = make_service_item(price="5.00")

        first = hotel.consume_service(booking.id, item.id, 1)
        second = hotel.consume_service(booking.id, item.id, 1)

        assert first.invoice_id == second.invoice_id
        assert second.total_amount == Decimal("11.80")

    def test_short_service_item_refused(self, session, hotel, make_booking, make_service_item):
        booking = make_booking()
        item = make_service_item(track_stock=True, stock_quantity=1)

        with pytest.raises(InsufficientStockError):
            hotel.consume_service(booking.id, item.id, 2)

        assert session.execute(select(func.count()).select_from(LineItem)).scalar_one() == 0
        session.refresh(item)
        assert item.stock_quantity == 1

    def test_short_linked_product_refused(
        self, session, hotel, make_booking, make_product, make_batch, make_service_item
    ):
        booking = make_booking()
        product = make_product()
        make_batch(product, 1, date(2024, 2, 1))
        item = make_service_item(track_stock=True, stock_quantity=10, product=product)

        with pytest.raises(InsufficientStockError):
            hotel.consume_service(booking.id, item.id, 3)

        session.refresh(item)
        assert item.stock_quantity == 10

    def test_unknown_booking(self, hotel, make_service_item):
        item = make_service_item()
        with pytest.raises(BookingNotFoundError):
            hotel.consume_service(uuid4(), item.id, 1)

    def test_removing_line_restores_stock(
        self, session, hotel, make_booking, make_product, make_batch, make_service_item
    ):
        booking = make_booking()
        product = make_product()
        batch = make_batch(product, 4, date(2024, 2, 1))
        item = make_service_item(track_stock=True, stock_quantity=4, product=product)
        charge = hotel.consume_service(booking.id, item.id, 3)

        summary = hotel.remove_service_line(charge.line_item_id)
        session.refresh(item)
        session.refresh(batch)

        assert (item.stock_quantity, batch.quantity) == (4, 4)
        assert summary.total_amount == Decimal("0.00")

    def test_oversold_linked_product_still_leaves_product_trail(
        self, session, policy, deterministic_clock, make_booking, make_product, make_batch,
        make_service_item,
    ):
        lenient = replace(policy, stock=StockPolicy(reject_oversell=False))
        hotel = HotelService(session, lenient, deterministic_clock)
        booking = make_booking()
        product = make_product(name="Wine")
        make_batch(product, 0, date(2024, 2, 1))
        item = make_service_item(track_stock=True, stock_quantity=6, product=product)

        charge = hotel.consume_service(booking.id, item.id, 3)

        movements = session.execute(
            select(StockMovement)
            .where(StockMovement.reference_id == str(charge.line_item_id))
            .order_by(StockMovement.seq)
        ).scalars().all()
        assert [(m.entity_kind, m.quantity) for m in movements] == [
            (EntityKind.SERVICE_ITEM.value, 3),
            (EntityKind.PRODUCT.value, 3),
        ]
        assert movements[1].batch_id is None
        assert movements[1].was_clamped


def _count_movements(session) -> int:
    return session.execute(select(func.count()).select_from(StockMovement)).scalar_one()


class TestOrders:
    def test_place_order(self, session, hotel, make_service_item):
        tea = make_service_item(name="Tea", price="3.00")
        cake = make_service_item(name="Cake", price="4.00", track_stock=True, stock_quantity=5)

        order = hotel.place_order(
            [OrderLine(tea.id, 2), OrderLine(cake.id, 1)], location="Terrace"
        )
        session.refresh(cake)

        assert order.document_number == "ORD-000001"
        assert order.order_status == OrderStatus.PENDING.value
        assert order.subtotal == Decimal("10.00")
        assert order.total_amount == Decimal("11.80")
        assert cake.stock_quantity == 4
        movement = session.execute(select(StockMovement)).scalar_one()
        assert movement.reference_id == str(order.invoice_id)

    def test_status_flow(self, hotel, make_service_item):
        item = make_service_item()
        order = hotel.place_order([OrderLine(item.id, 1)])

        assert hotel.update_order_status(order.invoice_id, "preparing").order_status == "preparing"
        assert hotel.update_order_status(order.invoice_id, "served").order_status == "served"
        with pytest.raises(OrderStateError):
            hotel.update_order_status(order.invoice_id, OrderStatus.PREPARING)

    def test_cancel_restores_stock(self, session, hotel, make_product, make_batch, make_service_item):
        product = make_product()
        batch = make_batch(product, 6, date(2024, 2, 1))
        item = make_service_item(track_stock=True, stock_quantity=6, product=product)
        order = hotel.place_order([OrderLine(item.id, 4)])

        cancelled = hotel.cancel_order(order.invoice_id, "Guest changed mind")
        session.refresh(item)
        session.refresh(batch)

        assert cancelled.order_status == OrderStatus.CANCELLED.value
        assert cancelled.payment_status == PaymentStatus.CANCELLED.value
        assert (item.stock_quantity, batch.quantity) == (6, 6)

    def test_served_order_cannot_be_cancelled(self, hotel, make_service_item):
        item = make_service_item()
        order = hotel.place_order([OrderLine(item.id, 1)])
        hotel.update_order_status(order.invoice_id, OrderStatus.SERVED)

        with pytest.raises(OrderStateError):
            hotel.cancel_order(order.invoice_id)

    def test_order_line_cannot_be_removed_alone(self, session, hotel, make_service_item):
        item = make_service_item(price="3.00", track_stock=True, stock_quantity=10)
        order = hotel.place_order([OrderLine(item.id, 3)])
        line = _lines(session, order.invoice_id)[0]

        with pytest.raises(LineItemNotRemovableError):
            hotel.remove_service_line(line.id)

        session.refresh(item)
        assert item.stock_quantity == 7
        assert len(_lines(session, order.invoice_id)) == 1

        hotel.cancel_order(order.invoice_id)
        session.refresh(item)
        assert item.stock_quantity == 10

    def test_empty_order_rejected(self, hotel):
        with pytest.raises(ValueError):
            hotel.place_order([])


class TestBilling:
    def test_bill_orders_onto_booking_invoice(self, session, hotel, make_booking, make_service_item):
        booking = make_booking()
        item = make_service_item(name="Sandwich", price="5.00")
        first = hotel.place_order([OrderLine(item.id, 1)], booking_id=booking.id)
        second = hotel.place_order([OrderLine(item.id, 2)], booking_id=booking.id)

        summary = hotel.bill_orders([first.invoice_id, second.invoice_id], booking_id=booking.id)

        invoice = session.get(Invoice, summary.invoice_id)
        assert invoice.booking_id == booking.id
        lines = _lines(session, summary.invoice_id)
        assert [l.item_type for l in lines] == [LineItemType.ORDER.value] * 2
        assert {l.source_document_id for l in lines} == {first.invoice_id, second.invoice_id}
        assert summary.subtotal == Decimal("15.00")
        for order_id in (first.invoice_id, second.invoice_id):
            order = session.get(Invoice, order_id)
            session.refresh(order)
            assert order.order_status == OrderStatus.BILLED.value
            assert order.billed_invoice_id == summary.invoice_id

    def test_order_discount_carried_to_walk_in_invoice(self, hotel, make_service_item):
        item = make_service_item(price="5.00")
        order = hotel.place_order([OrderLine(item.id, 2)], discount_percent="10", customer_name="Walk-in")

        summary = hotel.bill_orders([order.invoice_id])

        assert order.total_amount == Decimal("10.62")
        assert summary.discount_amount == Decimal("1.00")
        assert summary.total_amount == Decimal("10.62")

    def test_billed_order_cannot_be_billed_again(self, hotel, make_service_item):
        item = make_service_item()
        order = hotel.place_order([OrderLine(item.id, 1)])
        hotel.bill_orders([order.invoice_id])

        with pytest.raises(OrderStateError):
            hotel.bill_orders([order.invoice_id])


class TestCheckout:
    def test_room_charge_added_once(self, session, hotel, make_booking):
        booking = make_booking(price_per_night="80.00")

        first = hotel.generate_checkout_invoice(booking.id)
        second = hotel.generate_checkout_invoice(booking.id)

        assert first.total_amount == Decimal("188.80")
        assert second.total_amount == Decimal("188.80")
        room_lines = [l for l in _lines(session, first.invoice_id) if l.item_type == "room"]
        assert len(room_lines) == 1
        assert room_lines[0].quantity == 2
        assert room_lines[0].description.endswith("2 night(s)")

    def test_same_day_stay_charges_one_night(self, hotel, make_booking):
        booking = make_booking(check_in=date(2024, 1, 5), check_out=date(2024, 1, 5), price_per_night="100.00")

        summary = hotel.generate_checkout_invoice(booking.id)

        assert summary.subtotal == Decimal("100.00")

    def test_checkout_includes_services(self, hotel, make_booking, make_service_item):
        booking = make_booking(price_per_night="80.00")
        item = make_service_item(price="10.00")
        hotel.consume_service(booking.id, item.id, 1)

        summary = hotel.generate_checkout_invoice(booking.id)

        assert summary.subtotal == Decimal("170.00")


class TestPayments:
    def test_payment_updates_invoice_and_booking(self, session, hotel, make_booking):
        booking = make_booking()
        invoice = hotel.generate_checkout_invoice(booking.id)

        summary = hotel.process_payment(invoice.invoice_id, "100.00", "card")
        session.refresh(booking)

        assert summary.payment_status == PaymentStatus.PARTIAL.value
        assert summary.amount_paid == Decimal("100.00")
        assert booking.paid_amount == Decimal("100.00")

        summary = hotel.process_payment(invoice.invoice_id, "88.80")
        assert summary.payment_status == PaymentStatus.PAID.value
