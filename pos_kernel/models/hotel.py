"""
Hotel-side ORM models: rooms, bookings and the guest service menu.

A ServiceMenuItem may keep its own stock count (track_stock) and may be
backed by a retail Product (product_id), in which case consumption is
propagated to the product's batches as well.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_kernel.db.base import TrackedBase
from pos_kernel.domain.values import BookingStatus
from pos_kernel.models.product import Product


class ServiceMenuItem(TrackedBase):
    """A guest-facing service (minibar item, laundry, meal...)."""

    __tablename__ = "hotel_service_menu"

    __table_args__ = (
        CheckConstraint(
            "stock_quantity >= 0", name="ck_hotel_service_menu_stock_nonnegative"
        ),
        Index("idx_service_menu_product", "product_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    track_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stock_quantity: Mapped[int] = mapped_column(nullable=False, default=0)
    min_stock_threshold: Mapped[int | None] = mapped_column(nullable=True)

    product_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("products.id"),
        nullable=True,
    )
    product: Mapped[Product | None] = relationship()

    def __repr__(self) -> str:
        return f"<ServiceMenuItem {self.name} qty={self.stock_quantity}>"


class Room(TrackedBase):
    __tablename__ = "hotel_rooms"

    room_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    room_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price_per_night: Mapped[Decimal] = mapped_column(nullable=False)


class Booking(TrackedBase):
    """A guest stay.  paid_amount mirrors payments taken on its invoice."""

    __tablename__ = "hotel_bookings"

    __table_args__ = (
        CheckConstraint(
            "check_out_date >= check_in_date", name="ck_hotel_bookings_dates"
        ),
    )

    booking_reference: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    room_id: Mapped[UUID] = mapped_column(ForeignKey("hotel_rooms.id"), nullable=False)
    guest_name: Mapped[str] = mapped_column(String(200), nullable=False)

    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.CONFIRMED.value
    )

    room: Mapped[Room] = relationship()
