"""
Tax arithmetic (``billing_kernel.domain.tax``).

Pure functions shared by every document kind:

* ``split_tax`` -- tax-inclusive amount + rate -> (excl, tax) components.
  Used when a line is synthesized from an inclusive amount (amendment
  supplements and credits).
* ``line_totals`` -- quantity x unit price + rate -> line components.
  Used for lines priced by a user.
* ``sum_totals`` -- document totals as the sum of its lines.

All results are quantized to cents with ROUND_HALF_UP and satisfy
``excl + tax == incl`` exactly.  Any rounding remainder lands in the tax
component, never in the exclusive base.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from billing_kernel.db.types import ZERO, round_money, to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TaxSplit:
    """Exclusive / tax / inclusive components of one amount."""

    amount_excl_tax: Decimal
    amount_tax: Decimal
    amount_incl_tax: Decimal


def _check_rate(rate_percent: Decimal) -> Decimal:
    rate = to_decimal(rate_percent)
    if rate < 0:
        raise ValueError(f"Tax rate must be >= 0, got {rate}")
    return rate


def split_tax(amount_incl_tax, tax_rate_percent) -> TaxSplit:
    """
    Split a tax-inclusive amount into its exclusive base and tax.

        excl = round_half_up(incl / (1 + rate / 100))
        tax  = incl - excl

    Raises:
        ValueError: If the rate is negative.
        TypeError: If a float is given.
    """
    incl = round_money(to_decimal(amount_incl_tax))
    rate = _check_rate(tax_rate_percent)

    excl = round_money(incl / (1 + rate / HUNDRED))
    return TaxSplit(amount_excl_tax=excl, amount_tax=incl - excl, amount_incl_tax=incl)


def line_totals(quantity, unit_price, tax_rate_percent) -> TaxSplit:
    """
    Totals for a user-priced line.

        excl = round(quantity x unit_price)
        tax  = round(excl x rate / 100)
        incl = excl + tax
    """
    rate = _check_rate(tax_rate_percent)
    excl = round_money(to_decimal(quantity) * to_decimal(unit_price))
    tax = round_money(excl * rate / HUNDRED)
    return TaxSplit(amount_excl_tax=excl, amount_tax=tax, amount_incl_tax=excl + tax)


def sum_totals(splits: Iterable[TaxSplit]) -> TaxSplit:
    """Document totals: component-wise sum of its line totals."""
    excl = ZERO
    tax = ZERO
    for s in splits:
        excl += s.amount_excl_tax
        tax += s.amount_tax
    return TaxSplit(amount_excl_tax=excl, amount_tax=tax, amount_incl_tax=excl + tax)
