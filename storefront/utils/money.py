# storefront/utils/money.py
# VND has no sub-unit: every amount is rounded to whole units, HALF_UP, everywhere.

from decimal import Decimal, ROUND_HALF_UP

Money = Decimal

UNIT = Decimal("1")
ZERO = Decimal("0")


def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_money(x) -> Money:
    return D(x).quantize(UNIT, rounding=ROUND_HALF_UP)


def clamp_zero(x) -> Money:
    x = D(x)
    return x if x > ZERO else ZERO


def to_number(x):
    return int(round_money(x)) if x is not None else None
