"""
pos_services.stock_propagator -- hotel service stock into the product ledger.

A hotel service menu item may track its own stock and may be linked to a
retail product.  Consuming the service then deducts from both ledgers:
one ``out`` movement on the service item and a FEFO consumption of the
linked product, all carrying the same reference id so either trail leads
back to the originating order or booking.

Flush-only; the calling module service owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from pos_engines.allocation import AllocationPlan
from pos_kernel.db.types import require_quantity
from pos_kernel.domain.values import EntityKind, MovementType
from pos_kernel.exceptions import ServiceItemNotFoundError
from pos_kernel.logging_config import LogContext, get_logger
from pos_kernel.models.hotel import ServiceMenuItem
from pos_kernel.models.stock_movement import StockMovement
from pos_services.stock_ledger import StockConsumption, StockLedgerService

logger = get_logger("services.stock_propagator")


@dataclass(frozen=True)
class PropagationResult:
    service_item_id: UUID
    service_movement: StockMovement
    product_consumption: StockConsumption | None = None

    @property
    def movements(self) -> tuple[StockMovement, ...]:
        linked = self.product_consumption.movements if self.product_consumption else ()
        return (self.service_movement, *linked)


class StockPropagator:
    """Deducts and restores linked stock for hotel service consumption."""

    def __init__(self, session: Session, ledger: StockLedgerService):
        self.session = session
        self.ledger = ledger

    def get_service_item(self, service_item_id: UUID) -> ServiceMenuItem:
        item = self.session.get(ServiceMenuItem, service_item_id)
        if item is None:
            raise ServiceItemNotFoundError(str(service_item_id))
        return item

    def deduct_linked_stock(
        self,
        service_item_id: UUID,
        quantity: int,
        reference_id: UUID | str,
        reason: str | None = None,
        *,
        product_plan: AllocationPlan | None = None,
    ) -> PropagationResult | None:
        """
        Deduct ``quantity`` from a service item and its linked product.

        Returns None when the item does not track stock.  ``product_plan``
        is an allocation already computed (and checked) for the linked
        product.
        """
        require_quantity(quantity)
        item = self.get_service_item(service_item_id)
        if not item.track_stock:
            logger.debug("stock_propagation_skipped", extra={
                "service_item_id": str(service_item_id),
                "reference_id": str(reference_id),
            })
            return None

        why = reason or f"Service consumed: {item.name}"
        with LogContext.bind(reference_id=reference_id):
            service_movement = self.ledger.apply_movement(
                EntityKind.SERVICE_ITEM, item.id, quantity, MovementType.OUT,
                why, reference_id,
            )

            consumption = None
            if item.product_id is not None:
                consumption = self.ledger.consume(
                    item.product_id, quantity, why, reference_id, plan=product_plan,
                )

        logger.info("stock_propagated", extra={
            "service_item_id": str(item.id),
            "product_id": str(item.product_id) if item.product_id else None,
            "quantity": quantity,
            "reference_id": str(reference_id),
            "product_movements": len(consumption.movements) if consumption else 0,
        })
        return PropagationResult(
            service_item_id=item.id,
            service_movement=service_movement,
            product_consumption=consumption,
        )

    def restore_linked_stock(self, reference_id: UUID | str, reason: str) -> list[StockMovement]:
        """Put back everything deducted under ``reference_id``, in both ledgers."""
        restored = self.ledger.compensate_reference(reference_id, reason)
        logger.info("stock_restored", extra={
            "reference_id": str(reference_id),
            "movements": len(restored),
        })
        return restored
