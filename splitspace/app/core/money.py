"""
Fixed-point money helpers (2 decimal places).
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from splitspace.app.core.exceptions import LedgerValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce DB/float/str values to a 2dp Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Validate a caller-supplied amount.

    Must be a positive number with at most 2 decimal places.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise LedgerValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise LedgerValidationError(f"{field} must be a number")
    if amount <= 0:
        raise LedgerValidationError(f"{field} must be greater than zero")
    if amount != amount.quantize(CENT):
        raise LedgerValidationError(f"{field} supports at most 2 decimal places")
    return amount.quantize(CENT)
