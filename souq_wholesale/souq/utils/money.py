from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from ..exceptions import InvalidAmount

CENT = Decimal("0.01")
GRAM = Decimal("0.001")


def q2(value) -> Decimal:
    """Round a money value to cents."""
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def q3(value) -> Decimal:
    """Round a weight to grams (3 dp of a kilo)."""
    return Decimal(str(value or 0)).quantize(GRAM, rounding=ROUND_HALF_UP)


def positive_amount(value, field="amount") -> Decimal:
    try:
        amount = q2(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"{field} is not a number.", **{field: value})
    if amount <= 0:
        raise InvalidAmount(f"{field} must be greater than zero.", **{field: amount})
    return amount
