"""
pos_services.batch_allocator -- loads a product's stock and plans FEFO.

Responsibility:
    Resolve a product's inventory mode (batch-tracked or aggregate) from
    the ledger store and run the pure FEFO planner over it.

Architecture position:
    Services -- stateful shell over pos_engines.allocation.  Read-only:
    never writes, so it is safe for previews.  Callers that are about to
    commit the plan pass ``lock=True`` to take row locks on the product
    and its batches (SELECT ... FOR UPDATE; ignored by SQLite).

Invariants enforced:
    - Inventory mode is decided once per call: Batched iff the product has
      at least one batch row (exhausted batches included), otherwise
      Aggregate over products.stock_quantity.
    - Batches are loaded fresh from the database (populate_existing), never
      from a stale identity map.

Failure modes:
    - ProductNotFoundError for an unknown product id.
    - ValueError for a non-positive requested quantity.
"""

from __future__ import annotations

import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_engines.allocation import (
    Aggregate,
    AllocationPlan,
    Batched,
    BatchSnapshot,
    InventoryMode,
    plan_allocation,
)
from pos_kernel.db.types import require_quantity
from pos_kernel.exceptions import ProductNotFoundError
from pos_kernel.logging_config import get_logger
from pos_kernel.models.product import Batch, Product

logger = get_logger("services.batch_allocator")


def snapshot_of(batch: Batch) -> BatchSnapshot:
    return BatchSnapshot(
        batch_id=batch.id,
        quantity=batch.quantity,
        expiry_date=batch.expiry_date,
        received_date=batch.received_date,
        batch_number=batch.batch_number,
        selling_price=batch.selling_price,
        purchase_price=batch.purchase_price,
    )


class BatchAllocator:
    """
    FEFO allocation against the ledger store.

    Contract:
        ``allocate`` returns an AllocationPlan and has no side effects.
    Non-goals:
        - Does not deduct anything; StockLedgerService applies plans.
        - Does not raise on shortfall; callers decide (see
          ``stock.reject_oversell``).
    """

    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: UUID, *, lock: bool = False) -> Product:
        stmt = select(Product).where(Product.id == product_id)
        if lock:
            stmt = stmt.with_for_update()
        product = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def load_batches(self, product_id: UUID, *, lock: bool = False) -> list[Batch]:
        stmt = select(Batch).where(Batch.product_id == product_id)
        if lock:
            stmt = stmt.with_for_update()
        return list(
            self.session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars()
        )

    def resolve_mode(self, product_id: UUID, *, lock: bool = False) -> InventoryMode:
        """Decide how ``product_id`` keeps its stock, as a tagged variant."""
        product = self.get_product(product_id, lock=lock)
        batches = self.load_batches(product_id, lock=lock)
        if batches:
            return Batched(tuple(snapshot_of(b) for b in batches))
        return Aggregate(product.stock_quantity)

    def allocate(
        self,
        product_id: UUID,
        requested_quantity: int,
        *,
        lock: bool = False,
    ) -> AllocationPlan:
        """
        Plan which batches supply ``requested_quantity`` units.

        Postconditions:
            plan.fulfilled iff the product can supply the full quantity.
            A partial plan is returned when it cannot.
        """
        require_quantity(requested_quantity)
        t0 = time.monotonic()

        mode = self.resolve_mode(product_id, lock=lock)
        plan = plan_allocation(mode=mode, requested=requested_quantity, product_id=product_id)

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("fefo_allocation_planned", extra={
            "product_id": str(product_id),
            "mode": plan.mode.value,
            "requested": requested_quantity,
            "allocated": plan.allocated,
            "available": plan.available,
            "batches_used": len(plan.allocations),
            "fulfilled": plan.fulfilled,
            "locked": lock,
            "duration_ms": duration_ms,
        })
        if not plan.fulfilled:
            logger.warning("fefo_allocation_short", extra={
                "product_id": str(product_id),
                "requested": requested_quantity,
                "available": plan.available,
                "shortfall": plan.shortfall,
            })
        return plan
