"""
Module: pos_engines
Responsibility:
    Re-exports the pure calculation engines: FEFO allocation, movement
    rules, document totals, loan balances and stock summaries.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import pos_kernel.domain, pos_kernel.db.types and
    pos_kernel.logging_config only.
    MUST NOT import pos_services or pos_modules.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only money arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine calls are traced via ``@traced_engine`` (pos_engines.tracer),
    emitting POS_ENGINE_TRACE records.
"""

from pos_engines.allocation import (
    Aggregate,
    AllocationPlan,
    BatchAllocation,
    Batched,
    BatchSnapshot,
    InventoryMode,
    ModeName,
    fefo_order,
    fefo_sort_key,
    plan_allocation,
)
from pos_engines.document_totals import (
    DocumentTotals,
    compute_totals,
    derive_payment_status,
    discount_from_percent,
    line_total,
    room_nights,
)
from pos_engines.loan_balance import LoanBalance, apply_payment, is_overdue, opening_balance
from pos_engines.stock_rules import inverse_movement_type, resulting_quantity, validate_delta
from pos_engines.stock_summary import (
    BatchSummary,
    expiring_within,
    is_low_stock,
    line_margin,
    summarize_batches,
)
from pos_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "Aggregate",
    "AllocationPlan",
    "BatchAllocation",
    "Batched",
    "BatchSnapshot",
    "InventoryMode",
    "ModeName",
    "fefo_order",
    "fefo_sort_key",
    "plan_allocation",
    "DocumentTotals",
    "compute_totals",
    "derive_payment_status",
    "discount_from_percent",
    "line_total",
    "room_nights",
    "LoanBalance",
    "apply_payment",
    "is_overdue",
    "opening_balance",
    "inverse_movement_type",
    "resulting_quantity",
    "validate_delta",
    "BatchSummary",
    "expiring_within",
    "is_low_stock",
    "line_margin",
    "summarize_batches",
    "compute_input_fingerprint",
    "traced_engine",
]
