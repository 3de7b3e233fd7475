"""Conversions between major currency units and processor minor units."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')


def to_decimal(value):
    """Coerce a JSON number or numeric string to Decimal.

    Raises:
        ValueError: If the value is not numeric (bools are rejected too)
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'Not a numeric amount: {value!r}')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValueError(f'Not a numeric amount: {value!r}')
    if not amount.is_finite():
        raise ValueError(f'Not a numeric amount: {value!r}')
    return amount


def quantize_amount(value):
    """Round a major-unit amount to 2 decimals (half up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value):
    """Convert major units to integer minor units, e.g. 12.345 -> 1235."""
    return int((to_decimal(value) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(cents):
    """Convert integer minor units to a 2-decimal major-unit Decimal."""
    return (Decimal(int(cents)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value):
    """Render a stored amount for JSON responses."""
    if value is None:
        return None
    return float(quantize_amount(value))
