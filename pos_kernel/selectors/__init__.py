"""Read-only query selectors returning frozen DTOs."""

from pos_kernel.selectors.base import BaseSelector
from pos_kernel.selectors.document_selector import (
    DocumentSelector,
    InvoiceDTO,
    LineItemDTO,
    LoanDTO,
)
from pos_kernel.selectors.stock_selector import (
    AggregateDriftDTO,
    ExpiringBatchDTO,
    LowStockDTO,
    MovementDTO,
    StockSelector,
)

__all__ = [
    "BaseSelector",
    "DocumentSelector",
    "InvoiceDTO",
    "LineItemDTO",
    "LoanDTO",
    "StockSelector",
    "MovementDTO",
    "LowStockDTO",
    "ExpiringBatchDTO",
    "AggregateDriftDTO",
]
