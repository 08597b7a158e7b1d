from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """Coerce a stored or user-supplied amount to Decimal (None counts as zero)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    value = to_decimal(value)
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def round_whole(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round to a whole currency unit (half away from zero), kept at 2 decimal places.

    Examples:
        >>> round_whole("187.5")
        Decimal('188.00')
        >>> round_whole("187.49")
        Decimal('187.00')
    """
    value = to_decimal(value)
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP).quantize(Decimal("0.01"))


def format_money(value: Union[Decimal, float, int, str], currency: str = "KES") -> str:
    """Format an amount for messages, e.g. ``KES 1,250.00``."""
    return f"{currency} {round_money(value):,.2f}"
