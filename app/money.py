# app/money.py

from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")


def money2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int((money2(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
