"""
Currency and Decimal Helpers

Currency codes with their minor-unit precision and the rounding helpers used
at every monetary boundary. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Optional, Union

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    INR = ("INR", 2)  # Indian Rupee, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01"""
        return Decimal('0.1') ** self.precision


DEFAULT_CURRENCY = Currency.INR

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert an incoming numeric value to Decimal without binary float drift

    Args:
        value: Decimal, int, float or numeric string

    Returns:
        Decimal value

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to Decimal")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise ValueError(f"Amount must be a finite number, got {value!r}")
    return result


def round_money(value: Numeric, currency: Optional[Currency] = None) -> Decimal:
    """
    Round to the currency's minor unit using round-half-away-from-zero

    Args:
        value: Amount to round
        currency: Currency defining precision (defaults to INR)

    Returns:
        Quantized Decimal
    """
    currency = currency or DEFAULT_CURRENCY
    return to_decimal(value).quantize(currency.minor_unit, rounding=ROUND_HALF_UP)

