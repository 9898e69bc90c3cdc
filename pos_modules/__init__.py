"""
POS Modules.

Event handlers over the kernel, engines and services.  Each module holds
frozen DTOs (models.py) and a service whose public methods own the
transaction boundary.

Modules:
- Sales: till sales of products with FEFO batch allocation
- Hotel: guest services, orders, billing, checkout and payments
- Loans: goods on credit and their repayment
"""

from pos_modules import hotel, loans, sales

__all__ = ["hotel", "loans", "sales"]
