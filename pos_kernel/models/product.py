"""
Product and Batch ORM models.

A Product is either batch-tracked (it has Batch rows, and its
stock_quantity is a derived aggregate) or aggregate-only (no Batch rows,
stock_quantity is the ledger itself).  Which one is decided by the
presence of batch rows, never by a flag.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_kernel.db.base import TrackedBase


class Product(TrackedBase):
    """
    A sellable retail product.

    Invariants:
        - stock_quantity >= 0.
        - For batch-tracked products stock_quantity == SUM(batch.quantity)
          after every ledger write.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_nonnegative"),
        Index("idx_products_barcode", "barcode"),
        Index("idx_products_category", "category"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    barcode: Mapped[str | None] = mapped_column(String(64), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    stock_quantity: Mapped[int] = mapped_column(nullable=False, default=0)
    min_stock_threshold: Mapped[int | None] = mapped_column(nullable=True)

    purchase_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    selling_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    batches: Mapped[list["Batch"]] = relationship(
        back_populates="product",
        order_by="Batch.received_date",
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} qty={self.stock_quantity}>"


class Batch(TrackedBase):
    """
    One received lot of a product, with its own expiry and prices.

    A batch is never deleted once anything references it; it is simply
    exhausted at quantity zero and skipped by allocation.
    """

    __tablename__ = "product_batches"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_batches_quantity_nonnegative"),
        Index("idx_batches_product_expiry", "product_id", "expiry_date"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"),
        nullable=False,
    )
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    purchase_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    selling_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_date: Mapped[date] = mapped_column(Date, nullable=False)

    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    product: Mapped[Product] = relationship(back_populates="batches")

    def __repr__(self) -> str:
        return f"<Batch {self.batch_number} qty={self.quantity} exp={self.expiry_date}>"
