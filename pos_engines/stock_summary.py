"""
pos_engines.stock_summary -- dashboard figures derived from batches.

Per product: total units on hand, next expiry, the price the next unit
will sell at (the FEFO-first batch), batches about to expire, and the
gross margin on a sold line.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from pos_engines.allocation import BatchSnapshot, fefo_order
from pos_kernel.db.types import round_money, to_decimal


@dataclass(frozen=True, slots=True)
class BatchSummary:
    total_quantity: int
    batch_count: int
    next_expiry: date | None
    current_selling_price: Decimal | None
    expired_quantity: int


def summarize_batches(batches: list[BatchSnapshot], today: date) -> BatchSummary:
    """Summarize the batches of one product as of ``today``."""
    live = fefo_order(batches)
    first = live[0] if live else None
    return BatchSummary(
        total_quantity=sum(b.quantity for b in live),
        batch_count=len(live),
        next_expiry=first.expiry_date if first else None,
        current_selling_price=first.selling_price if first else None,
        expired_quantity=sum(
            b.quantity for b in live if b.expiry_date is not None and b.expiry_date < today
        ),
    )


def expiring_within(
    batches: list[BatchSnapshot], today: date, days: int
) -> list[BatchSnapshot]:
    """Batches with stock whose expiry falls on or before today + days."""
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    horizon = today + timedelta(days=days)
    return [
        b for b in fefo_order(batches)
        if b.expiry_date is not None and b.expiry_date <= horizon
    ]


def line_margin(quantity: int, unit_price: Decimal, unit_cost: Decimal | None) -> Decimal | None:
    """(selling - purchase) * quantity; None when the cost is unknown."""
    if unit_cost is None:
        return None
    return round_money((to_decimal(unit_price) - to_decimal(unit_cost)) * quantity)


def is_low_stock(quantity: int, threshold: int | None, default_threshold: int) -> bool:
    limit = default_threshold if threshold is None else threshold
    return quantity <= limit
