"""
POS policy schema.

Frozen dataclasses produced by pos_config.loader from a YAML policy set.
Services receive the section they need (TaxPolicy, StockPolicy, ...) by
constructor injection; nothing below pos_config reads YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class TaxPolicy:
    """Flat tax rates, as fractions (0.18 == 18%)."""

    invoice_rate: Decimal = Decimal("0.18")
    order_rate: Decimal = Decimal("0.18")
    retail_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class StockPolicy:
    # Event handlers refuse to sell what is not there.  When False they
    # proceed and the ledger clamps at zero.
    reject_oversell: bool = True
    default_min_stock_threshold: int = 10
    expiry_warning_days: int = 30
    movement_history_limit: int = 50


@dataclass(frozen=True)
class LoanPolicy:
    allow_overpayment: bool = False
    default_term_days: int | None = 30
    default_payment_method: str = "cash"


@dataclass(frozen=True)
class NumberingPolicy:
    invoice_prefix: str = "INV"
    order_prefix: str = "ORD"
    sale_prefix: str = "SAL"
    loan_prefix: str = "LN"
    width: int = 6


@dataclass(frozen=True)
class PosPolicy:
    """The complete runtime policy."""

    config_id: str
    version: int
    tax: TaxPolicy = field(default_factory=TaxPolicy)
    stock: StockPolicy = field(default_factory=StockPolicy)
    loans: LoanPolicy = field(default_factory=LoanPolicy)
    numbering: NumberingPolicy = field(default_factory=NumberingPolicy)
    checksum: str = ""
