"""
Policy loader (``pos_config.loader``).

Responsibility
--------------
Reads a YAML policy file and parses it into ``pos_config.schema``
dataclasses, collecting every validation problem before raising.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``InvalidConfigError`` listing every problem.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from pos_config.schema import (
    LoanPolicy,
    NumberingPolicy,
    PosPolicy,
    StockPolicy,
    TaxPolicy,
)
from pos_kernel.exceptions import InvalidConfigError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _decimal(value: Any, name: str, errors: list[str]) -> Decimal | None:
    if isinstance(value, float):
        # YAML 0.18 arrives as a float; quote rates in the file.
        errors.append(f"{name} must be a quoted decimal string, got float {value!r}")
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        errors.append(f"{name} is not a decimal: {value!r}")
        return None


def _rate(data: dict[str, Any], key: str, default: Decimal, errors: list[str]) -> Decimal:
    if key not in data:
        return default
    rate = _decimal(data[key], f"tax.{key}", errors)
    if rate is None:
        return default
    if rate < 0 or rate >= 1:
        errors.append(f"tax.{key} must be a fraction in [0, 1), got {rate}")
    return rate


def _int(data: dict[str, Any], key: str, section: str, default: Any, errors: list[str],
         *, minimum: int = 0, nullable: bool = False) -> Any:
    if key not in data:
        return default
    value = data[key]
    if value is None and nullable:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{section}.{key} must be an integer, got {value!r}")
        return default
    if value < minimum:
        errors.append(f"{section}.{key} must be >= {minimum}, got {value}")
    return value


def _bool(data: dict[str, Any], key: str, section: str, default: bool, errors: list[str]) -> bool:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, bool):
        errors.append(f"{section}.{key} must be true or false, got {value!r}")
        return default
    return value


def parse_tax(data: dict[str, Any], errors: list[str]) -> TaxPolicy:
    d = TaxPolicy()
    return TaxPolicy(
        invoice_rate=_rate(data, "invoice_rate", d.invoice_rate, errors),
        order_rate=_rate(data, "order_rate", d.order_rate, errors),
        retail_rate=_rate(data, "retail_rate", d.retail_rate, errors),
    )


def parse_stock(data: dict[str, Any], errors: list[str]) -> StockPolicy:
    d = StockPolicy()
    return StockPolicy(
        reject_oversell=_bool(data, "reject_oversell", "stock", d.reject_oversell, errors),
        default_min_stock_threshold=_int(
            data, "default_min_stock_threshold", "stock", d.default_min_stock_threshold, errors
        ),
        expiry_warning_days=_int(
            data, "expiry_warning_days", "stock", d.expiry_warning_days, errors
        ),
        movement_history_limit=_int(
            data, "movement_history_limit", "stock", d.movement_history_limit, errors,
            minimum=1,
        ),
    )


def parse_loans(data: dict[str, Any], errors: list[str]) -> LoanPolicy:
    d = LoanPolicy()
    method = data.get("default_payment_method", d.default_payment_method)
    if not isinstance(method, str) or not method:
        errors.append(f"loans.default_payment_method must be a non-empty string, got {method!r}")
        method = d.default_payment_method
    return LoanPolicy(
        allow_overpayment=_bool(data, "allow_overpayment", "loans", d.allow_overpayment, errors),
        default_term_days=_int(
            data, "default_term_days", "loans", d.default_term_days, errors,
            minimum=1, nullable=True,
        ),
        default_payment_method=method,
    )


def parse_numbering(data: dict[str, Any], errors: list[str]) -> NumberingPolicy:
    d = NumberingPolicy()
    prefixes = {}
    for key in ("invoice_prefix", "order_prefix", "sale_prefix", "loan_prefix"):
        value = data.get(key, getattr(d, key))
        if not isinstance(value, str) or not value.strip():
            errors.append(f"numbering.{key} must be a non-empty string, got {value!r}")
            value = getattr(d, key)
        prefixes[key] = value
    if len(set(prefixes.values())) != len(prefixes):
        errors.append(f"numbering prefixes must be distinct, got {sorted(prefixes.values())}")
    return NumberingPolicy(
        width=_int(data, "width", "numbering", d.width, errors, minimum=1),
        **prefixes,
    )


def parse_policy(data: dict[str, Any], source: str | None = None) -> PosPolicy:
    """
    Parse a full policy document.

    Every section is optional and falls back to the schema defaults;
    unknown top-level sections are rejected.

    Raises:
        InvalidConfigError: listing every problem found.
    """
    errors: list[str] = []
    known = {"config_id", "version", "tax", "stock", "loans", "numbering"}
    unknown = sorted(set(data) - known)
    if unknown:
        errors.append(f"unknown sections: {unknown}")

    sections: dict[str, dict[str, Any]] = {}
    for name in ("tax", "stock", "loans", "numbering"):
        section = data.get(name) or {}
        if not isinstance(section, dict):
            errors.append(f"{name} must be a mapping")
            section = {}
        sections[name] = section

    policy = PosPolicy(
        config_id=str(data.get("config_id", "default")),
        version=_int(data, "version", "policy", 1, errors, minimum=1),
        tax=parse_tax(sections["tax"], errors),
        stock=parse_stock(sections["stock"], errors),
        loans=parse_loans(sections["loans"], errors),
        numbering=parse_numbering(sections["numbering"], errors),
        checksum=compute_checksum(data),
    )
    if errors:
        raise InvalidConfigError(errors, source=source)
    return policy
