"""
pos_services.stock_ledger -- the only writer of stock quantities.

Responsibility:
    Apply in / out / adjustment movements to the three quantity ledgers
    (batch quantity, product aggregate, hotel service item) and append one
    immutable StockMovement per change.  Applies FEFO allocation plans,
    receives new batches, keeps the product aggregate in step with its
    batches, and issues compensating movements.

Architecture position:
    Services -- imperative shell over pos_engines.stock_rules and
    pos_engines.allocation.  Flush-only: the caller owns the transaction.

Invariants enforced:
    - A stored quantity is never negative.  ``out`` clamps at zero; the
      movement keeps the requested delta plus the before / after levels.
    - ``adjustment`` sets an absolute level.
    - Every quantity write is one SQL statement computed in the database
      (``SET q = CASE WHEN q > :d THEN q - :d ELSE 0 END``), after a
      row-locked read of the previous level.  There is no
      read-modify-write in Python.
    - Plan-driven batch consumption is conditional
      (``WHERE quantity >= :n``); a batch drained since planning raises
      StockContentionError instead of silently under-deducting.
    - For batch-tracked products products.stock_quantity is rewritten
      from SUM(batch.quantity) after every batch write.  It is never
      incremented on its own.

Failure modes:
    - ProductNotFoundError / BatchNotFoundError / ServiceItemNotFoundError.
    - InventoryModeError for an aggregate write on a batch-tracked product.
    - StockContentionError when a planned batch no longer holds its share.
    - NonCompensableMovementError / MovementNotFoundError from compensate().
    - ValueError for invalid deltas.

Audit relevance:
    Movements carry reason, reference_id (the originating sale, order,
    booking or loan) and a monotonically increasing seq.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from pos_engines.allocation import AllocationPlan, ModeName
from pos_engines.stock_rules import inverse_movement_type, validate_delta
from pos_kernel.db.types import ZERO, require_quantity, to_decimal
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.values import EntityKind, MovementType
from pos_kernel.exceptions import (
    BatchNotFoundError,
    InventoryModeError,
    MovementNotFoundError,
    NonCompensableMovementError,
    ProductNotFoundError,
    ServiceItemNotFoundError,
    StockContentionError,
)
from pos_kernel.logging_config import get_logger
from pos_kernel.models.hotel import ServiceMenuItem
from pos_kernel.models.product import Batch, Product
from pos_kernel.models.stock_movement import StockMovement
from pos_kernel.services.base import BaseService
from pos_kernel.services.sequence_service import SequenceService
from pos_services.batch_allocator import BatchAllocator

logger = get_logger("services.stock_ledger")


@dataclass(frozen=True)
class StockConsumption:
    """What consume() did: the plan it followed and the movements it wrote."""

    product_id: UUID
    plan: AllocationPlan
    movements: tuple[StockMovement, ...]

    @property
    def deducted(self) -> int:
        return sum(m.previous_quantity - m.resulting_quantity for m in self.movements)

    @property
    def shortfall(self) -> int:
        return self.plan.requested - self.deducted


def _reference(reference_id: UUID | str | None) -> str | None:
    return None if reference_id is None else str(reference_id)


class StockLedgerService(BaseService[StockMovement]):
    """
    Applies stock movements.

    Contract:
        Every public write method appends StockMovement rows and updates
        the stored level in the same flush.
    Non-goals:
        - Does not commit.
        - Does not refuse oversell; the ``out`` primitive clamps.  Refusal
          is the event handler's decision (InsufficientStockError).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._sequences = SequenceService(session)
        self.allocator = BatchAllocator(session)

    # =========================================================================
    # Primitive
    # =========================================================================

    def apply_movement(
        self,
        entity_kind: EntityKind | str,
        entity_id: UUID,
        delta: int,
        movement_type: MovementType | str,
        reason: str,
        reference_id: UUID | str | None = None,
        *,
        batch_id: UUID | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """
        Apply one movement to a product, batch or service item.

        ``entity_kind`` product with ``batch_id`` writes the batch and then
        resyncs the product aggregate.  Without ``batch_id`` the product
        must be aggregate-only.

        Postconditions:
            Exactly one StockMovement is appended and the stored level is
            in / out-clamped / adjusted as the movement type says.
        """
        kind = EntityKind(entity_kind)
        mtype = MovementType(movement_type)
        validate_delta(delta, mtype)

        if kind is EntityKind.SERVICE_ITEM:
            previous, resulting = self._write_level(
                ServiceMenuItem, ServiceMenuItem.stock_quantity, entity_id, delta, mtype
            )
            return self._record(
                kind=kind,
                service_item_id=entity_id,
                movement_type=mtype,
                quantity=delta,
                previous=previous,
                resulting=resulting,
                reason=reason,
                reference_id=reference_id,
                notes=notes,
            )

        if batch_id is not None:
            batch = self.session.get(Batch, batch_id)
            if batch is None or batch.product_id != entity_id:
                raise BatchNotFoundError(str(batch_id))
            previous, resulting = self._write_level(
                Batch, Batch.quantity, batch_id, delta, mtype
            )
            movement = self._record(
                kind=kind,
                product_id=entity_id,
                batch_id=batch_id,
                movement_type=mtype,
                quantity=delta,
                previous=previous,
                resulting=resulting,
                reason=reason,
                reference_id=reference_id,
                notes=notes,
            )
            self.sync_product_aggregate(entity_id)
            return movement

        if self.has_batches(entity_id):
            raise InventoryModeError(
                str(entity_id),
                ModeName.BATCHED.value,
                "movements must target a batch (pass batch_id) or go through consume()",
            )
        previous, resulting = self._write_level(
            Product, Product.stock_quantity, entity_id, delta, mtype
        )
        return self._record(
            kind=kind,
            product_id=entity_id,
            movement_type=mtype,
            quantity=delta,
            previous=previous,
            resulting=resulting,
            reason=reason,
            reference_id=reference_id,
            notes=notes,
        )

    # =========================================================================
    # Plan application
    # =========================================================================

    def consume(
        self,
        product_id: UUID,
        quantity: int,
        reason: str,
        reference_id: UUID | str | None = None,
        *,
        plan: AllocationPlan | None = None,
        notes: str | None = None,
    ) -> StockConsumption:
        """
        Deduct ``quantity`` units of a product following FEFO.

        Batch-tracked: one ``out`` movement per batch in the plan, each a
        conditional decrement, then one aggregate resync.  A short plan
        adds one batchless ``out`` movement for the unmet quantity that
        leaves the aggregate unchanged.  Aggregate-only:
        one clamped ``out`` movement on the product.

        A precomputed ``plan`` (e.g. from a preview) may be passed; it is
        applied as-is and any batch that no longer covers its share raises
        StockContentionError.
        """
        require_quantity(quantity)
        if plan is None:
            plan = self.allocator.allocate(product_id, quantity, lock=True)
        elif plan.requested != quantity:
            raise ValueError(
                f"Plan was built for {plan.requested} units, not {quantity}"
            )

        if not plan.is_batched:
            movement = self.apply_movement(
                EntityKind.PRODUCT, product_id, quantity, MovementType.OUT,
                reason, reference_id, notes=notes,
            )
            return StockConsumption(product_id=product_id, plan=plan, movements=(movement,))

        movements: list[StockMovement] = []
        for allocation in plan.allocations:
            previous, resulting = self._take_from_batch(
                allocation.batch_id, allocation.quantity
            )
            movements.append(
                self._record(
                    kind=EntityKind.PRODUCT,
                    product_id=product_id,
                    batch_id=allocation.batch_id,
                    movement_type=MovementType.OUT,
                    quantity=allocation.quantity,
                    previous=previous,
                    resulting=resulting,
                    reason=reason,
                    reference_id=reference_id,
                    notes=notes,
                )
            )
        level = self.sync_product_aggregate(product_id)

        if not plan.fulfilled:
            # The unmet part is recorded on the product itself so the trail
            # always holds the full requested quantity.
            movements.append(
                self._record(
                    kind=EntityKind.PRODUCT,
                    product_id=product_id,
                    movement_type=MovementType.OUT,
                    quantity=plan.requested - plan.allocated,
                    previous=level,
                    resulting=level,
                    reason=reason,
                    reference_id=reference_id,
                    notes=notes,
                )
            )
            logger.warning("stock_consumption_clamped", extra={
                "product_id": str(product_id),
                "requested": plan.requested,
                "deducted": plan.allocated,
                "shortfall": plan.requested - plan.allocated,
                "reference_id": _reference(reference_id),
            })
        return StockConsumption(product_id=product_id, plan=plan, movements=tuple(movements))

    # =========================================================================
    # Receiving and aggregate maintenance
    # =========================================================================

    def receive_batch(
        self,
        product_id: UUID,
        quantity: int,
        *,
        batch_number: str,
        received_date: date | None = None,
        expiry_date: date | None = None,
        purchase_price: Decimal | str = ZERO,
        selling_price: Decimal | str | None = None,
        supplier: str | None = None,
        reason: str = "Batch received",
        reference_id: UUID | str | None = None,
        notes: str | None = None,
    ) -> Batch:
        """
        Create a batch and record its stock with an ``in`` movement.

        When the product was aggregate-only and still holds stock, that
        stock is first carried into an undated opening batch so the
        aggregate stays equal to the sum of its batches.
        """
        require_quantity(quantity)
        product = self.allocator.get_product(product_id, lock=True)

        if not self.has_batches(product_id) and product.stock_quantity > 0:
            self._open_batch_tracking(product)

        batch = Batch(
            product_id=product_id,
            batch_number=batch_number,
            quantity=0,
            received_date=received_date or self._clock.today(),
            expiry_date=expiry_date,
            purchase_price=to_decimal(purchase_price),
            selling_price=None if selling_price is None else to_decimal(selling_price),
            supplier=supplier,
            notes=notes,
            created_by_id=self._actor_id,
        )
        self.session.add(batch)
        self.session.flush()

        self.apply_movement(
            EntityKind.PRODUCT, product_id, quantity, MovementType.IN,
            reason, reference_id, batch_id=batch.id,
        )
        logger.info("batch_received", extra={
            "product_id": str(product_id),
            "batch_id": str(batch.id),
            "batch_number": batch_number,
            "quantity": quantity,
            "expiry_date": expiry_date,
        })
        return batch

    def _open_batch_tracking(self, product: Product) -> None:
        carried = product.stock_quantity
        opening = Batch(
            product_id=product.id,
            batch_number="OPENING",
            quantity=0,
            received_date=self._clock.today(),
            purchase_price=product.purchase_price,
            selling_price=product.selling_price,
            created_by_id=self._actor_id,
        )
        self.session.add(opening)
        self.session.flush()
        previous, resulting = self._write_level(
            Batch, Batch.quantity, opening.id, carried, MovementType.IN
        )
        self._record(
            kind=EntityKind.PRODUCT,
            product_id=product.id,
            batch_id=opening.id,
            movement_type=MovementType.IN,
            quantity=carried,
            previous=previous,
            resulting=resulting,
            reason="Opening balance carried into batch tracking",
        )
        logger.info("batch_tracking_opened", extra={
            "product_id": str(product.id),
            "carried_quantity": carried,
        })

    def has_batches(self, product_id: UUID) -> bool:
        return self.session.execute(
            select(func.count(Batch.id)).where(Batch.product_id == product_id)
        ).scalar_one() > 0

    def sync_product_aggregate(self, product_id: UUID) -> int:
        """Rewrite products.stock_quantity as SUM(batch.quantity), atomically."""
        batch_total = (
            select(func.coalesce(func.sum(Batch.quantity), 0))
            .where(Batch.product_id == product_id)
            .scalar_subquery()
        )
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=batch_total),
            execution_options={"synchronize_session": "fetch"},
        )
        if result.rowcount == 0:
            raise ProductNotFoundError(str(product_id))
        total = self._read_level(Product, Product.stock_quantity, product_id)
        logger.debug("product_aggregate_synced", extra={
            "product_id": str(product_id),
            "stock_quantity": total,
        })
        return total

    # =========================================================================
    # Compensation
    # =========================================================================

    def compensate(
        self,
        movement_id: UUID,
        reason: str,
        reference_id: UUID | str | None = None,
    ) -> StockMovement:
        """
        Undo the effect of one in/out movement with an inverse movement.

        The inverse carries the quantity actually applied (a clamped
        ``out`` is reversed by what it really removed) and points back at
        the original through ``compensates_id``.
        """
        original = self.session.get(StockMovement, movement_id)
        if original is None:
            raise MovementNotFoundError(str(movement_id))
        if original.compensates_id is not None:
            raise NonCompensableMovementError(str(movement_id), "movement is itself a compensation")
        try:
            inverse = inverse_movement_type(MovementType(original.movement_type))
        except ValueError:
            raise NonCompensableMovementError(
                str(movement_id), "adjustments set an absolute level"
            ) from None

        applied = abs(original.resulting_quantity - original.previous_quantity)
        if applied == 0:
            raise NonCompensableMovementError(str(movement_id), "movement changed nothing")
        already = self.session.execute(
            select(func.count(StockMovement.id)).where(StockMovement.compensates_id == movement_id)
        ).scalar_one()
        if already:
            raise NonCompensableMovementError(str(movement_id), "already compensated")

        kind = EntityKind(original.entity_kind)
        if kind is EntityKind.SERVICE_ITEM:
            model, column, target_id = (
                ServiceMenuItem, ServiceMenuItem.stock_quantity, original.service_item_id
            )
        elif original.batch_id is not None:
            model, column, target_id = Batch, Batch.quantity, original.batch_id
        else:
            model, column, target_id = Product, Product.stock_quantity, original.product_id

        previous, resulting = self._write_level(model, column, target_id, applied, inverse)
        movement = self._record(
            kind=kind,
            product_id=original.product_id,
            service_item_id=original.service_item_id,
            batch_id=original.batch_id,
            movement_type=inverse,
            quantity=applied,
            previous=previous,
            resulting=resulting,
            reason=reason,
            reference_id=reference_id if reference_id is not None else original.reference_id,
            compensates_id=original.id,
        )
        if model is Batch:
            self.sync_product_aggregate(original.product_id)
        logger.info("stock_movement_compensated", extra={
            "movement_id": str(original.id),
            "compensation_id": str(movement.id),
            "quantity": applied,
        })
        return movement

    def compensate_reference(self, reference_id: UUID | str, reason: str) -> list[StockMovement]:
        """Compensate every outstanding in/out movement carrying ``reference_id``."""
        ref = _reference(reference_id)
        compensated = select(StockMovement.compensates_id).where(
            StockMovement.compensates_id.is_not(None)
        )
        candidates = self.session.execute(
            select(StockMovement)
            .where(
                StockMovement.reference_id == ref,
                StockMovement.compensates_id.is_(None),
                StockMovement.movement_type != MovementType.ADJUSTMENT.value,
                StockMovement.previous_quantity != StockMovement.resulting_quantity,
                StockMovement.id.not_in(compensated),
            )
            .order_by(StockMovement.seq)
        ).scalars().all()
        return [self.compensate(m.id, reason) for m in candidates]

    # =========================================================================
    # Internals
    # =========================================================================

    def _read_level(self, model, column, entity_id: UUID, *, lock: bool = False) -> int | None:
        stmt = select(column).where(model.id == entity_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def _not_found(self, model, entity_id: UUID) -> Exception:
        if model is ServiceMenuItem:
            return ServiceItemNotFoundError(str(entity_id))
        if model is Batch:
            return BatchNotFoundError(str(entity_id))
        return ProductNotFoundError(str(entity_id))

    def _write_level(
        self,
        model,
        column,
        entity_id: UUID,
        delta: int,
        movement_type: MovementType,
    ) -> tuple[int, int]:
        """Apply the movement rule in one UPDATE; return (previous, resulting)."""
        previous = self._read_level(model, column, entity_id, lock=True)
        if previous is None:
            raise self._not_found(model, entity_id)

        if movement_type is MovementType.IN:
            new_value = column + delta
        elif movement_type is MovementType.OUT:
            new_value = case((column > delta, column - delta), else_=0)
        else:
            new_value = delta

        self.session.execute(
            update(model).where(model.id == entity_id).values({column.key: new_value}),
            execution_options={"synchronize_session": "fetch"},
        )
        resulting = self._read_level(model, column, entity_id)

        if movement_type is MovementType.OUT and previous < delta:
            logger.warning("stock_deduction_clamped", extra={
                "entity_type": model.__name__,
                "entity_id": str(entity_id),
                "requested": delta,
                "previous_quantity": previous,
            })
        return previous, resulting

    def _take_from_batch(self, batch_id: UUID, quantity: int) -> tuple[int, int]:
        """Conditional decrement: the batch must still hold ``quantity``."""
        previous = self._read_level(Batch, Batch.quantity, batch_id, lock=True)
        if previous is None:
            raise BatchNotFoundError(str(batch_id))
        result = self.session.execute(
            update(Batch)
            .where(Batch.id == batch_id, Batch.quantity >= quantity)
            .values(quantity=Batch.quantity - quantity),
            execution_options={"synchronize_session": "fetch"},
        )
        if result.rowcount == 0:
            logger.warning("stock_contention_detected", extra={
                "batch_id": str(batch_id),
                "planned": quantity,
                "available": previous,
            })
            raise StockContentionError(str(batch_id), quantity)
        return previous, previous - quantity

    def _record(
        self,
        *,
        kind: EntityKind,
        movement_type: MovementType,
        quantity: int,
        previous: int,
        resulting: int,
        reason: str,
        product_id: UUID | None = None,
        service_item_id: UUID | None = None,
        batch_id: UUID | None = None,
        reference_id: UUID | str | None = None,
        notes: str | None = None,
        compensates_id: UUID | None = None,
    ) -> StockMovement:
        movement = StockMovement(
            seq=self._sequences.next_value(SequenceService.STOCK_MOVEMENT),
            entity_kind=kind.value,
            product_id=product_id,
            service_item_id=service_item_id,
            batch_id=batch_id,
            movement_type=movement_type.value,
            quantity=quantity,
            previous_quantity=previous,
            resulting_quantity=resulting,
            reason=reason,
            reference_id=_reference(reference_id),
            notes=notes,
            compensates_id=compensates_id,
            created_at=self._clock.now(),
            created_by_id=self._actor_id,
        )
        self.session.add(movement)
        self.session.flush()
        logger.info("stock_movement_applied", extra={
            "movement_id": str(movement.id),
            "seq": movement.seq,
            "entity_kind": kind.value,
            "product_id": str(product_id) if product_id else None,
            "service_item_id": str(service_item_id) if service_item_id else None,
            "batch_id": str(batch_id) if batch_id else None,
            "movement_type": movement_type.value,
            "quantity": quantity,
            "previous_quantity": previous,
            "resulting_quantity": resulting,
            "reference_id": movement.reference_id,
        })
        return movement
