"""
pos_engines.stock_rules -- how a movement changes a stored quantity.

    in          new = current + delta
    out         new = max(0, current - delta)     (silent clamp)
    adjustment  new = delta                       (absolute count)

The same rules are expressed in SQL by StockLedgerService so that the
write is a single atomic statement; this module is the reference the
SQL is tested against.
"""

from pos_kernel.db.types import require_quantity
from pos_kernel.domain.values import MovementType


def validate_delta(delta: int, movement_type: MovementType) -> int:
    """in/out need a positive delta; an adjustment may set zero."""
    movement_type = MovementType(movement_type)
    return require_quantity(delta, allow_zero=movement_type is MovementType.ADJUSTMENT)


def resulting_quantity(current: int, delta: int, movement_type: MovementType) -> int:
    movement_type = MovementType(movement_type)
    validate_delta(delta, movement_type)
    if movement_type is MovementType.IN:
        return current + delta
    if movement_type is MovementType.OUT:
        return max(0, current - delta)
    return delta


def inverse_movement_type(movement_type: MovementType) -> MovementType:
    """The movement type that undoes ``movement_type``.

    Raises:
        ValueError: adjustments have no inverse.
    """
    movement_type = MovementType(movement_type)
    if movement_type is MovementType.IN:
        return MovementType.OUT
    if movement_type is MovementType.OUT:
        return MovementType.IN
    raise ValueError("Adjustments have no inverse movement")
