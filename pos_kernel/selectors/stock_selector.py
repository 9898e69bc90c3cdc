"""
Module: pos_kernel.selectors.stock_selector
Responsibility: Read-only stock queries for dashboards and audits:
    movement history, low-stock lists, expiring batches, per-product batch
    summaries and the batch / aggregate consistency check.
Architecture position: Kernel > Selectors.  May import models/ and the
    pure pos_engines.stock_summary helpers.

Invariants enforced:
    - Read-only.
    - Movement history is ordered newest first by seq.

Audit relevance:
    aggregate_drift() lists batch-tracked products whose stored
    stock_quantity differs from SUM(batch.quantity).  It never repairs.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from pos_engines.allocation import BatchSnapshot
from pos_engines.stock_summary import (
    BatchSummary,
    expiring_within,
    is_low_stock,
    summarize_batches,
)
from pos_kernel.domain.values import EntityKind
from pos_kernel.models.hotel import ServiceMenuItem
from pos_kernel.models.product import Batch, Product
from pos_kernel.models.stock_movement import StockMovement
from pos_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class MovementDTO:
    id: UUID
    seq: int
    entity_kind: str
    product_id: UUID | None
    service_item_id: UUID | None
    batch_id: UUID | None
    movement_type: str
    quantity: int
    previous_quantity: int
    resulting_quantity: int
    reason: str
    reference_id: str | None
    compensates_id: UUID | None
    created_at: datetime

    @property
    def was_clamped(self) -> bool:
        return self.movement_type == "out" and self.previous_quantity < self.quantity


@dataclass(frozen=True)
class LowStockDTO:
    entity_kind: str
    entity_id: UUID
    name: str
    stock_quantity: int
    threshold: int


@dataclass(frozen=True)
class ExpiringBatchDTO:
    batch_id: UUID
    product_id: UUID
    batch_number: str
    quantity: int
    expiry_date: date
    days_left: int


@dataclass(frozen=True)
class AggregateDriftDTO:
    product_id: UUID
    stored_quantity: int
    batch_quantity: int


def _movement_dto(m: StockMovement) -> MovementDTO:
    return MovementDTO(
        id=m.id,
        seq=m.seq,
        entity_kind=m.entity_kind,
        product_id=m.product_id,
        service_item_id=m.service_item_id,
        batch_id=m.batch_id,
        movement_type=m.movement_type,
        quantity=m.quantity,
        previous_quantity=m.previous_quantity,
        resulting_quantity=m.resulting_quantity,
        reason=m.reason,
        reference_id=m.reference_id,
        compensates_id=m.compensates_id,
        created_at=m.created_at,
    )


def _snapshot(b: Batch) -> BatchSnapshot:
    return BatchSnapshot(
        batch_id=b.id,
        quantity=b.quantity,
        expiry_date=b.expiry_date,
        received_date=b.received_date,
        batch_number=b.batch_number,
        selling_price=b.selling_price,
        purchase_price=b.purchase_price,
    )


class StockSelector(BaseSelector[StockMovement]):
    """Stock read models."""

    def __init__(self, session: Session, default_min_stock_threshold: int = 10):
        super().__init__(session)
        self._default_threshold = default_min_stock_threshold

    def movement_history(
        self,
        entity_kind: EntityKind | str,
        entity_id: UUID,
        limit: int = 50,
    ) -> list[MovementDTO]:
        """
        Movements of one product, batch or service item, newest first.

        For a product this includes the movements of all its batches.
        """
        kind = EntityKind(entity_kind)
        stmt = select(StockMovement)
        if kind is EntityKind.SERVICE_ITEM:
            stmt = stmt.where(StockMovement.service_item_id == entity_id)
        else:
            stmt = stmt.where(
                StockMovement.entity_kind == kind.value,
                or_(StockMovement.product_id == entity_id, StockMovement.batch_id == entity_id),
            )
        rows = self.session.execute(
            stmt.order_by(StockMovement.seq.desc()).limit(limit)
        ).scalars()
        return [_movement_dto(m) for m in rows]

    def movements_for_reference(self, reference_id: UUID | str) -> list[MovementDTO]:
        rows = self.session.execute(
            select(StockMovement)
            .where(StockMovement.reference_id == str(reference_id))
            .order_by(StockMovement.seq)
        ).scalars()
        return [_movement_dto(m) for m in rows]

    def low_stock_products(self) -> list[LowStockDTO]:
        rows = self.session.execute(
            select(Product).where(Product.is_active.is_(True)).order_by(Product.name)
        ).scalars()
        return [
            LowStockDTO(
                entity_kind=EntityKind.PRODUCT.value,
                entity_id=p.id,
                name=p.name,
                stock_quantity=p.stock_quantity,
                threshold=self._threshold(p.min_stock_threshold),
            )
            for p in rows
            if is_low_stock(p.stock_quantity, p.min_stock_threshold, self._default_threshold)
        ]

    def low_stock_service_items(self) -> list[LowStockDTO]:
        rows = self.session.execute(
            select(ServiceMenuItem)
            .where(ServiceMenuItem.track_stock.is_(True))
            .order_by(ServiceMenuItem.name)
        ).scalars()
        return [
            LowStockDTO(
                entity_kind=EntityKind.SERVICE_ITEM.value,
                entity_id=s.id,
                name=s.name,
                stock_quantity=s.stock_quantity,
                threshold=self._threshold(s.min_stock_threshold),
            )
            for s in rows
            if is_low_stock(s.stock_quantity, s.min_stock_threshold, self._default_threshold)
        ]

    def _threshold(self, value: int | None) -> int:
        return self._default_threshold if value is None else value

    def expiring_batches(self, today: date, days: int = 30) -> list[ExpiringBatchDTO]:
        """Batches with stock left that expire within ``days`` of ``today``."""
        batches = list(
            self.session.execute(
                select(Batch).where(Batch.quantity > 0, Batch.expiry_date.is_not(None))
            ).scalars()
        )
        by_id = {b.id: b for b in batches}
        return [
            ExpiringBatchDTO(
                batch_id=s.batch_id,
                product_id=by_id[s.batch_id].product_id,
                batch_number=s.batch_number,
                quantity=s.quantity,
                expiry_date=s.expiry_date,
                days_left=(s.expiry_date - today).days,
            )
            for s in expiring_within([_snapshot(b) for b in batches], today, days)
        ]

    def batch_summary(self, product_id: UUID, today: date) -> BatchSummary:
        batches = self.session.execute(
            select(Batch).where(Batch.product_id == product_id)
        ).scalars()
        return summarize_batches([_snapshot(b) for b in batches], today)

    def current_selling_price(self, product_id: UUID) -> Decimal | None:
        """Selling price of the FEFO-first batch, else the product's own price."""
        product = self.session.get(Product, product_id)
        if product is None:
            return None
        summary = self.batch_summary(product_id, date.min)
        return summary.current_selling_price or product.selling_price

    def aggregate_drift(self) -> list[AggregateDriftDTO]:
        """Batch-tracked products whose stored aggregate disagrees with their batches."""
        batch_total = func.sum(Batch.quantity).label("batch_total")
        rows = self.session.execute(
            select(Product.id, Product.stock_quantity, batch_total)
            .join(Batch, Batch.product_id == Product.id)
            .group_by(Product.id, Product.stock_quantity)
        ).all()
        return [
            AggregateDriftDTO(
                product_id=row.id,
                stored_quantity=row.stock_quantity,
                batch_quantity=int(row.batch_total),
            )
            for row in rows
            if row.stock_quantity != int(row.batch_total)
        ]
