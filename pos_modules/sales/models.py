"""
Retail sale DTOs (``pos_modules.sales.models``).

Frozen value objects passed in to and returned from SalesService.  They
carry no database identity beyond the ids of the rows they describe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from pos_engines.allocation import AllocationPlan


@dataclass(frozen=True)
class SaleLine:
    """One product on the till.  unit_price overrides the batch / catalogue price."""

    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class SaleLinePreview:
    product_id: UUID
    quantity: int
    plan: AllocationPlan

    @property
    def fulfilled(self) -> bool:
        return self.plan.fulfilled


@dataclass(frozen=True)
class SalePreview:
    lines: tuple[SaleLinePreview, ...]

    @property
    def can_complete(self) -> bool:
        return all(line.fulfilled for line in self.lines)

    @property
    def short_lines(self) -> tuple[SaleLinePreview, ...]:
        return tuple(line for line in self.lines if not line.fulfilled)


@dataclass(frozen=True)
class SaleResult:
    invoice_id: UUID
    document_number: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    payment_status: str
    movement_ids: tuple[UUID, ...] = field(default_factory=tuple)
