"""
Money Precision Module

Every monetary value in the ledger is a Decimal with two decimal places.
NEVER uses float for stored or computed amounts; floats handed in by callers
are converted through their string form.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

# High precision for intermediate results; stored amounts are quantized to cents
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
# Largest single amount or opening balance; keeps cent arithmetic far inside prec
MAX_AMOUNT = Decimal('999999999999999.99')
DEFAULT_SYMBOL = "₹"

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert a caller-supplied value to Decimal.

    Raises:
        ValueError: If the value is not a finite decimal number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
    else:
        raise ValueError(f"Not a monetary amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def has_cent_precision(amount: Decimal) -> bool:
    """
    Check that an amount carries no more than two decimal places.

    Reads the digit tuple instead of quantizing, so it never rounds and never
    overflows the context precision. Trailing fractional zeros do not count.
    """
    _, digits, exponent = amount.as_tuple()
    significant = list(digits)
    while exponent < -2 and len(significant) > 1 and significant[-1] == 0:
        significant.pop()
        exponent += 1
    return exponent >= -2 or not any(significant)


def within_limit(amount: Decimal) -> bool:
    """Check that an amount fits under MAX_AMOUNT in magnitude"""
    return -MAX_AMOUNT <= amount <= MAX_AMOUNT


def quantize(amount: Decimal) -> Decimal:
    """Round to cents"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal, symbol: str = DEFAULT_SYMBOL) -> str:
    """Format for display, e.g. ₹1,250.00"""
    if amount < 0:
        return f"-{symbol}{-amount:,.2f}"
    return f"{symbol}{amount:,.2f}"
