"""Value enums shared by models, engines and services."""

from enum import Enum


class MovementType(str, Enum):
    """How a movement's quantity is applied to the stored level."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class EntityKind(str, Enum):
    """Which ledger a movement was written against."""

    PRODUCT = "product"
    SERVICE_ITEM = "service_item"


class DocumentKind(str, Enum):
    SALE = "sale"
    HOTEL_INVOICE = "hotel_invoice"
    HOTEL_ORDER = "hotel_order"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"
    BILLED = "billed"


class LineItemType(str, Enum):
    ROOM = "room"
    SERVICE = "service"
    ORDER = "order"
    PRODUCT = "product"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
