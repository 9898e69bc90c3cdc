"""ORM models for the POS kernel ledger store."""

from pos_kernel.domain.values import (
    BookingStatus,
    DocumentKind,
    EntityKind,
    LineItemType,
    LoanStatus,
    MovementType,
    OrderStatus,
    PaymentStatus,
)
from pos_kernel.models.hotel import Booking, Room, ServiceMenuItem
from pos_kernel.models.invoice import Invoice, LineItem
from pos_kernel.models.loan import Loan, LoanItem, LoanPayment
from pos_kernel.models.product import Batch, Product
from pos_kernel.models.sequence import SequenceCounter
from pos_kernel.models.stock_movement import StockMovement

__all__ = [
    "Product",
    "Batch",
    "StockMovement",
    "MovementType",
    "EntityKind",
    "ServiceMenuItem",
    "Room",
    "Booking",
    "BookingStatus",
    "Invoice",
    "LineItem",
    "DocumentKind",
    "PaymentStatus",
    "OrderStatus",
    "LineItemType",
    "Loan",
    "LoanItem",
    "LoanPayment",
    "LoanStatus",
    "SequenceCounter",
]
