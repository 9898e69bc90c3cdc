"""
Retail Sales Module (``pos_modules.sales``).

Till sales of products: FEFO batch allocation, stock deduction and a
numbered ``sale`` document with one line per batch consumed.
"""

from pos_modules.sales.models import SaleLine, SaleLinePreview, SalePreview, SaleResult
from pos_modules.sales.service import SalesService

__all__ = ["SaleLine", "SaleLinePreview", "SalePreview", "SaleResult", "SalesService"]
