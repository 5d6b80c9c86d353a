"""Input normalization helpers shared by models and services."""
from decimal import Decimal, InvalidOperation

from core.exceptions import InvalidQuantityError


def normalize_code(value) -> str:
    """Trim and uppercase an item or branch code. Idempotent."""
    return str(value or '').strip().upper()


def coerce_quantity(value, minimum: int = 0) -> int:
    """
    Convert a client supplied quantity to an integer.

    Accepts ints, integral floats/Decimals and numeric strings. Booleans,
    NaN, infinities, fractions and values below ``minimum`` are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidQuantityError(f"Quantity must be a number, got {value!r}")

    if isinstance(value, int):
        quantity = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidQuantityError(f"Quantity must be a number, got {value!r}")
        if not number.is_finite():
            raise InvalidQuantityError("Quantity must be a finite number")
        if number != number.to_integral_value():
            raise InvalidQuantityError(f"Quantity must be a whole number, got {value}")
        quantity = int(number)

    if quantity < minimum:
        raise InvalidQuantityError(f"Quantity must be at least {minimum}, got {quantity}")
    return quantity

