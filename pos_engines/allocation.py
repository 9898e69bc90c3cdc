"""
pos_engines.allocation -- First-Expired-First-Out batch allocation.

Responsibility:
    Given a snapshot of a product's stock, decide which batches satisfy a
    requested quantity.  Produces a plan; never mutates anything.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stateful
    BatchAllocator (pos_services.batch_allocator) loads the snapshot and
    hands it to plan_allocation().

Invariants enforced:
    - FEFO order: batches are consumed in ascending expiry_date; batches
      without an expiry date come after every dated batch.
    - Deterministic ties: equal expiry dates are broken by received_date,
      then batch_number, then batch_id.
    - Greedy fill: each batch gives min(batch.quantity, remaining).
    - fulfilled iff the allocations sum to the requested quantity.  A
      partial plan is still returned when stock runs out.

Failure modes:
    - ValueError if requested is not a strictly positive integer.
    - ValueError from BatchSnapshot if quantity is negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pos_engines.tracer import traced_engine
from pos_kernel.db.types import require_quantity
from pos_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class ModeName(str, Enum):
    BATCHED = "batched"
    AGGREGATE = "aggregate"


@dataclass(frozen=True, slots=True)
class BatchSnapshot:
    """Point-in-time view of one batch, as loaded by the allocator."""

    batch_id: UUID
    quantity: int
    expiry_date: date | None = None
    received_date: date | None = None
    batch_number: str = ""
    selling_price: Decimal | None = None
    purchase_price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            logger.error("batch_snapshot_negative_quantity", extra={
                "batch_id": str(self.batch_id),
                "quantity": self.quantity,
            })
            raise ValueError(
                f"Batch quantity cannot be negative, got {self.quantity}"
            )


@dataclass(frozen=True, slots=True)
class BatchAllocation:
    """One (batch, quantity_taken) pair of a plan."""

    batch_id: UUID
    quantity: int
    expiry_date: date | None = None
    batch_number: str = ""
    selling_price: Decimal | None = None
    purchase_price: Decimal | None = None


@dataclass(frozen=True, slots=True)
class Batched:
    """Inventory mode: stock lives in batch rows."""

    batches: tuple[BatchSnapshot, ...]

    @property
    def name(self) -> ModeName:
        return ModeName.BATCHED

    @property
    def available(self) -> int:
        return sum(b.quantity for b in self.batches)


@dataclass(frozen=True, slots=True)
class Aggregate:
    """Inventory mode: no batches, stock is the product's own counter."""

    quantity: int

    @property
    def name(self) -> ModeName:
        return ModeName.AGGREGATE

    @property
    def available(self) -> int:
        return self.quantity


InventoryMode = Batched | Aggregate


@dataclass(frozen=True, slots=True)
class AllocationPlan:
    """
    Result of an allocation.

    For an aggregate-mode product allocations is always empty; fulfilled
    then only says whether the aggregate counter covers the request.
    """

    requested: int
    allocations: tuple[BatchAllocation, ...]
    fulfilled: bool
    mode: ModeName
    available: int
    product_id: UUID | None = None

    @property
    def allocated(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.available)

    @property
    def is_batched(self) -> bool:
        return self.mode is ModeName.BATCHED


def fefo_sort_key(batch: BatchSnapshot) -> tuple:
    """Sort key putting the soonest expiry first and undated batches last."""
    return (
        batch.expiry_date is None,
        batch.expiry_date or date.min,
        batch.received_date or date.min,
        batch.batch_number,
        str(batch.batch_id),
    )


def fefo_order(batches: tuple[BatchSnapshot, ...] | list[BatchSnapshot]) -> list[BatchSnapshot]:
    """Return the batches with stock, in the order FEFO consumes them."""
    return sorted((b for b in batches if b.quantity > 0), key=fefo_sort_key)


@traced_engine("fefo_allocation", "1.0", fingerprint_fields=("mode", "requested"))
def plan_allocation(
    *,
    mode: InventoryMode,
    requested: int,
    product_id: UUID | None = None,
) -> AllocationPlan:
    """
    Build a FEFO allocation plan for ``requested`` units.

    Preconditions:
        requested > 0.
    Postconditions:
        sum(plan.allocations.quantity) <= requested, with equality iff
        plan.fulfilled (batched mode).
    """
    require_quantity(requested)

    if isinstance(mode, Aggregate):
        return AllocationPlan(
            requested=requested,
            allocations=(),
            fulfilled=mode.quantity >= requested,
            mode=ModeName.AGGREGATE,
            available=mode.quantity,
            product_id=product_id,
        )

    allocations: list[BatchAllocation] = []
    remaining = requested
    for batch in fefo_order(mode.batches):
        if remaining <= 0:
            break
        take = min(batch.quantity, remaining)
        allocations.append(
            BatchAllocation(
                batch_id=batch.batch_id,
                quantity=take,
                expiry_date=batch.expiry_date,
                batch_number=batch.batch_number,
                selling_price=batch.selling_price,
                purchase_price=batch.purchase_price,
            )
        )
        remaining -= take

    return AllocationPlan(
        requested=requested,
        allocations=tuple(allocations),
        fulfilled=remaining == 0,
        mode=ModeName.BATCHED,
        available=mode.available,
        product_id=product_id,
    )
