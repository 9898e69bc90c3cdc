"""
POS Kernel

Ledger store for a retail point-of-sale and hotel property-management
system:
- Batch-tracked and aggregate product stock
- Append-only stock movement trail
- Invoices, hotel orders and customer loans with derived totals
"""

__version__ = "0.1.0"
