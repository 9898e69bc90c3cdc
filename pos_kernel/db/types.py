"""
Module: pos_kernel.db.types
Responsibility: Precision constants and the single rounding function for
    money.  Every stored total goes through round_money().
Architecture position: Kernel > DB.  Importable by every layer, including
    the pure engines.

Invariants enforced:
    - No floats: all amounts are Decimal.
    - Money is quantized to cents with ROUND_HALF_UP.
    - Stock quantities are whole units (int).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the only sanctioned rounding function for money in the system.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def to_decimal(value: object) -> Decimal:
    """Coerce int / str / Decimal to Decimal.  Floats are refused."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float) or isinstance(value, bool):
        raise TypeError(f"Money must not be a {type(value).__name__}: {value!r}")
    try:
        return Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc


def require_quantity(value: object, *, allow_zero: bool = False) -> int:
    """Validate a whole-unit stock quantity."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Quantity must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValueError(f"Quantity must be {bound}, got {value}")
    return value
