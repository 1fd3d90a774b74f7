"""
Module: billing_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for monetary
    columns.  Centralizes precision and rounding so that every model, the
    tax splitter and every service use identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Single currency (EUR), two decimal places.  round_money() with
      ROUND_HALF_UP is the ONLY sanctioned rounding function.
    - No floats anywhere in the billing kernel.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Monetary amount: 12 digits, 2 decimal places
Money = Annotated[Decimal, Numeric(12, 2)]

# Tax rate in percent, e.g. 20.00
TaxRate = Annotated[Decimal, Numeric(5, 2)]

# Line quantity (fractional days / hours allowed)
Quantity = Annotated[Decimal, Numeric(12, 3)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and notes
LongText = Annotated[str, String(4000)]


CURRENCY = "EUR"
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def money_from_str(value: str) -> Decimal:
    """
    Create a Money value from a string.

    Not rounded; callers apply round_money() where needed.

    Raises:
        decimal.InvalidOperation: If value is not a number.
    """
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for monetary values.
    """
    quantize_str = "0." + "0" * decimal_places
    return Decimal(value).quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value) -> Decimal:
    """Coerce int / str / Decimal input to Decimal.  Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("float is not accepted for monetary values; use Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
