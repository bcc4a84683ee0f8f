"""Price quantization helpers.

Exchanges quote prices as an integer number of price steps. SQLite keeps
them as REAL, which drifts by float error, so reads snap values back onto
the instrument's step grid.
"""

from collections.abc import Callable
from decimal import ROUND_HALF_EVEN, Decimal

PriceConverter = Callable[[float, Decimal], Decimal]


def to_units(price: Decimal, step: Decimal) -> int:
    """Convert a decimal price into an integer count of price steps.

    Args:
        price: The decimal price.
        step: Smallest price increment of the instrument (e.g. 0.01).

    Returns:
        Nearest whole number of steps (banker's rounding).
    """
    return int((price / step).quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def from_units(units: int, step: Decimal) -> Decimal:
    """Convert an integer count of price steps back to a decimal price."""
    return Decimal(units) * step


def quantize_price(value: float, step: Decimal) -> Decimal:
    """Snap a stored float price onto the instrument's step grid.

    A zero step means the instrument is unquantized; the float's shortest
    decimal repr is returned as-is.
    """
    price = Decimal(str(value))
    if step == 0:
        return price
    return from_units(to_units(price, step), step)
