"""
Numeric type utilities for Decimal precision.

Prices and sizes never pass through binary floating point arithmetic.
Floats supplied by callers are converted through their shortest string
form, and non-finite values are rejected.
"""

from typing import Any
from decimal import Context, Decimal, ROUND_DOWN, ROUND_HALF_UP, InvalidOperation

from ..exceptions import ValidationError

# Collateral and conditional tokens both use 6 decimals on chain
TOKEN_DECIMALS = 6


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Strictly convert a caller-supplied number to Decimal.

    Args:
        value: str, int, float or Decimal
        field: Field name for error messages

    Returns:
        Finite Decimal

    Raises:
        ValidationError: If the value is missing, malformed, NaN or infinite

    Examples:
        >>> to_decimal("0.65")
        Decimal('0.65')
        >>> to_decimal(0.1)
        Decimal('0.1')
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number, got {value!r}", {"field": field})
    try:
        if isinstance(value, Decimal):
            dec = value
        elif isinstance(value, (str, int)):
            dec = Decimal(value)
        elif isinstance(value, float):
            # Convert via string to avoid float precision loss
            dec = Decimal(repr(value))
        else:
            raise ValidationError(
                f"{field} must be a number, got {type(value).__name__}", {"field": field}
            )
    except InvalidOperation:
        raise ValidationError(f"{field} is not a valid number: {value!r}", {"field": field}) from None

    if not dec.is_finite():
        raise ValidationError(f"{field} must be finite, got {dec}", {"field": field, "value": str(dec)})
    return dec


def decimal_places(value: Decimal) -> int:
    """
    Number of significant fractional digits.

    Trailing zeros do not count: ``Decimal("0.50")`` has 1 place.
    """
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def is_multiple_of(value: Decimal, step: Decimal) -> bool:
    """Exact divisibility check (no tolerance)."""
    if step <= 0:
        raise ValidationError(f"Step must be positive, got {step}")
    return value % step == 0


# Wide enough for any amount that still fits in a uint256 field
WIDE = Context(prec=100)
MAX_UINT256 = 2 ** 256 - 1


def multiply(a: Decimal, b: Decimal) -> Decimal:
    """Exact product of two amounts (no rounding at the default 28 digits)."""
    return WIDE.multiply(a, b)


def to_base_units(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert token amount to integer base units.

    Raises:
        ValidationError: If the amount does not fit an on-chain uint256

    Examples:
        >>> to_base_units(Decimal("100.50"))
        100500000
    """
    try:
        scaled = WIDE.multiply(amount, Decimal(10) ** decimals)
        units = int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP, context=WIDE))
    except InvalidOperation:
        units = None
    if units is None or units > MAX_UINT256:
        raise ValidationError(f"Amount {amount} is too large", {"amount": str(amount)})
    return units


def round_down(value: Decimal, places: int) -> Decimal:
    """Truncate toward zero to ``places`` fractional digits."""
    try:
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN, context=WIDE)
    except InvalidOperation:
        raise ValidationError(f"Amount {value} is too large", {"amount": str(value)}) from None
