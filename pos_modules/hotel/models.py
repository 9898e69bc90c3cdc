"""
Hotel DTOs (``pos_modules.hotel.models``).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from pos_services.stock_propagator import PropagationResult


@dataclass(frozen=True)
class OrderLine:
    service_item_id: UUID
    quantity: int


@dataclass(frozen=True)
class ServiceCharge:
    """A guest service added to a booking's invoice."""

    invoice_id: UUID
    line_item_id: UUID
    total_amount: Decimal
    propagation: PropagationResult | None

    @property
    def movement_ids(self) -> tuple[UUID, ...]:
        if self.propagation is None:
            return ()
        return tuple(m.id for m in self.propagation.movements)


@dataclass(frozen=True)
class DocumentSummary:
    invoice_id: UUID
    document_number: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    payment_status: str
    order_status: str | None = None
