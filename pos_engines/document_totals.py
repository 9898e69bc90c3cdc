"""
pos_engines.document_totals -- invoice / order / sale totals.

Responsibility:
    Derive a document's subtotal, discount, tax and total from its line
    totals, and its payment status from the amount paid.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Persisted by
    DocumentReconciler (pos_services.document_reconciler).

Invariants enforced:
    - subtotal = SUM(line totals)
    - tax      = (subtotal - discount) * tax_rate
    - total    = subtotal - discount + tax
    - Every stored amount is rounded once, to cents, ROUND_HALF_UP.
    - discount never exceeds the subtotal, so tax and total are >= 0.
    - Idempotent: the same lines always give the same totals.

Failure modes:
    - ValueError on a negative tax rate, discount or line quantity.
    - TypeError on float amounts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.db.types import ZERO, round_money, to_decimal
from pos_kernel.domain.values import PaymentStatus

HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class DocumentTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    """quantity * unit_price, in cents."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"Line quantity must be a positive integer, got {quantity!r}")
    price = to_decimal(unit_price)
    if price < 0:
        raise ValueError(f"Unit price cannot be negative, got {price}")
    return round_money(price * quantity)


def discount_from_percent(subtotal: Decimal, percent: Decimal) -> Decimal:
    """Discount amount for a percentage (0-100) of the subtotal."""
    percent = to_decimal(percent)
    if percent < 0 or percent > HUNDRED:
        raise ValueError(f"Discount percent must be within 0..100, got {percent}")
    return round_money(to_decimal(subtotal) * percent / HUNDRED)


@traced_engine(
    "document_totals",
    "1.0",
    fingerprint_fields=("line_totals", "tax_rate", "discount_amount", "discount_percent"),
)
def compute_totals(
    *,
    line_totals: list[Decimal] | tuple[Decimal, ...],
    tax_rate: Decimal,
    discount_amount: Decimal = ZERO,
    discount_percent: Decimal | None = None,
) -> DocumentTotals:
    """
    Compute document totals from line totals.

    ``tax_rate`` is a fraction (0.18 for 18%).  When ``discount_percent``
    is given it takes precedence over ``discount_amount``.
    """
    rate = to_decimal(tax_rate)
    if rate < 0:
        raise ValueError(f"Tax rate cannot be negative, got {rate}")

    subtotal = round_money(sum((to_decimal(t) for t in line_totals), ZERO))

    if discount_percent is not None:
        discount = discount_from_percent(subtotal, discount_percent)
    else:
        discount = round_money(to_decimal(discount_amount))
        if discount < 0:
            raise ValueError(f"Discount cannot be negative, got {discount}")
    discount = min(discount, subtotal)

    taxable = subtotal - discount
    tax = round_money(taxable * rate)
    return DocumentTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=taxable + tax,
    )


def derive_payment_status(total_amount: Decimal, amount_paid: Decimal) -> PaymentStatus:
    """pending until something is paid, paid once the total is covered."""
    paid = to_decimal(amount_paid)
    if paid <= 0:
        return PaymentStatus.PENDING
    if paid >= to_decimal(total_amount):
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def room_nights(check_in: date, check_out: date) -> int:
    """Nights charged for a stay; a same-day stay is charged one night."""
    if check_out < check_in:
        raise ValueError(f"Check-out {check_out} is before check-in {check_in}")
    return max(1, math.ceil((check_out - check_in).days))
