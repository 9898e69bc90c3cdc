"""
Customer Loans Module (``pos_modules.loans``).

Goods on credit: FEFO stock deduction at creation, payments until the
balance is settled, overdue flagging and cancellation.
"""

from pos_modules.loans.models import LoanLine, LoanSummary, PaymentReceipt
from pos_modules.loans.service import LoanService

__all__ = ["LoanLine", "LoanSummary", "PaymentReceipt", "LoanService"]
