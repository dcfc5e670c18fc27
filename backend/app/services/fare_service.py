"""
Fare calculation.

A flat fare per seat plus a fixed 18% tax. The booking service calls this
exactly once, before inserting the reservation, and stores all three amounts
on the row, so later fare changes on the route never touch existing bookings.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

TAX_RATE = Decimal("0.18")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FareBreakdown:
    base: Decimal
    tax: Decimal
    total: Decimal


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_fare(seat_count: int, fare_per_seat) -> FareBreakdown:
    """Return base, tax and total for `seat_count` seats at `fare_per_seat`."""
    if seat_count < 1:
        raise ValueError(f"seat_count must be positive, got {seat_count}")
    fare = Decimal(str(fare_per_seat))
    if fare <= 0:
        raise ValueError(f"fare_per_seat must be positive, got {fare}")

    base = _money(fare * seat_count)
    tax = _money(base * TAX_RATE)
    return FareBreakdown(base=base, tax=tax, total=base + tax)
