"""
Rental quote: day count, base price, tax and total.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from rental_engine.core.clock import ensure_utc
from rental_engine.core.exceptions import InvalidDateRange

SECONDS_PER_DAY = 86400
CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Round half-up to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    rental_days: int
    base_price: Decimal
    tax_amount: Decimal
    total_price: Decimal


def rental_days(pickup: datetime, return_: datetime) -> int:
    """Whole days charged: any started day counts."""
    pickup, return_ = ensure_utc(pickup), ensure_utc(return_)
    seconds = (return_ - pickup).total_seconds()
    days = math.ceil(seconds / SECONDS_PER_DAY)
    if days <= 0:
        raise InvalidDateRange(pickup_date=pickup, return_date=return_)
    return days


def quote(pickup: datetime, return_: datetime, price_per_day: Number, tax_rate: Number) -> Quote:
    days = rental_days(pickup, return_)
    base = Decimal(str(price_per_day)) * days
    tax = base * Decimal(str(tax_rate))
    return Quote(
        rental_days=days,
        base_price=to_money(base),
        tax_amount=to_money(tax),
        total_price=to_money(base + tax),
    )
