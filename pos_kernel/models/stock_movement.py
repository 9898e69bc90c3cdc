"""
StockMovement -- the append-only audit trail of every quantity change.

Write-once: UPDATE and DELETE are rejected by the ORM listeners in
pos_kernel.db.immutability.  Entity references are plain UUID columns
with no foreign keys so history survives catalogue clean-ups.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pos_kernel.db.base import Base, UUIDString
from pos_kernel.domain.values import EntityKind, MovementType

__all__ = ["StockMovement", "MovementType", "EntityKind"]


class StockMovement(Base):
    """
    One quantity change on a product, batch or hotel service item.

    quantity is the delta the caller asked for.  previous_quantity and
    resulting_quantity record what the ledger actually held before and
    after, so a clamped ``out`` is visible as
    previous - quantity != resulting.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movements_product", "product_id", "seq"),
        Index("idx_movements_service_item", "service_item_id", "seq"),
        Index("idx_movements_batch", "batch_id"),
        Index("idx_movements_reference", "reference_id"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    entity_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    service_item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    previous_quantity: Mapped[int] = mapped_column(nullable=False)
    resulting_quantity: Mapped[int] = mapped_column(nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    compensates_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def entity_id(self) -> UUID | None:
        if self.entity_kind == EntityKind.SERVICE_ITEM.value:
            return self.service_item_id
        return self.batch_id or self.product_id

    @property
    def was_clamped(self) -> bool:
        return (
            self.movement_type == MovementType.OUT.value
            and self.previous_quantity < self.quantity
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovement #{self.seq} {self.movement_type} {self.quantity} "
            f"{self.previous_quantity}->{self.resulting_quantity}>"
        )
