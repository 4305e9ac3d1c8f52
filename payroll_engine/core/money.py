"""
Currency helpers.

Every monetary amount in the engine passes through ``round_currency`` so that
all modules agree on a single rounding rule: two decimal places, half-up.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MONTHS_IN_YEAR = Decimal("12")


def to_decimal(value: Any) -> Decimal:
    """Convert ints, floats, strings and Decimals to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a numeric amount: {value!r}")


def round_currency(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_up_rupee(value: Any) -> Decimal:
    """Round up to the next whole rupee, as statutory contributions are."""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_CEILING).quantize(CENT)


def annual_to_monthly(annual: Any) -> Decimal:
    return round_currency(to_decimal(annual) / MONTHS_IN_YEAR)


def monthly_to_annual(monthly: Any) -> Decimal:
    return round_currency(to_decimal(monthly) * MONTHS_IN_YEAR)


def sum_currency(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return round_currency(total)


def percentage_change(old: Any, new: Any) -> Decimal:
    old = to_decimal(old)
    if old == 0:
        return ZERO
    return round_currency((to_decimal(new) - old) / old * Decimal("100"))
