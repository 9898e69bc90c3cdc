"""
pos_services -- stateful services over the pure engines.

    BatchAllocator       FEFO planning against the ledger store (read-only)
    StockLedgerService   the only writer of stock quantities
    StockPropagator      hotel service stock into the product ledger
    DocumentReconciler   invoice / order / loan totals

Every service flushes inside the caller's transaction and never commits.
"""

from pos_services.batch_allocator import BatchAllocator, snapshot_of
from pos_services.document_reconciler import DocumentReconciler, DriftReport
from pos_services.stock_ledger import StockConsumption, StockLedgerService
from pos_services.stock_propagator import PropagationResult, StockPropagator

__all__ = [
    "BatchAllocator",
    "snapshot_of",
    "DocumentReconciler",
    "DriftReport",
    "StockConsumption",
    "StockLedgerService",
    "PropagationResult",
    "StockPropagator",
]
