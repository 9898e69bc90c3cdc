"""
Hotel Module (``pos_modules.hotel``).

Guest services charged to bookings, restaurant / room-service orders and
their billing, checkout room charges and invoice payments.  Service items
that track stock deduct from their own ledger and from the linked retail
product through StockPropagator.
"""

from pos_modules.hotel.models import DocumentSummary, OrderLine, ServiceCharge
from pos_modules.hotel.service import (
    CANCELLABLE_ORDER_STATES,
    ORDER_TRANSITIONS,
    HotelService,
)

__all__ = [
    "DocumentSummary",
    "OrderLine",
    "ServiceCharge",
    "HotelService",
    "ORDER_TRANSITIONS",
    "CANCELLABLE_ORDER_STATES",
]
