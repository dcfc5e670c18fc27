"""
Cancellation rules, checked in this order:

  1. the requester owns the reservation            -> Unauthorized
  2. it is not already cancelled                   -> AlreadyCancelled
  3. it is not completed                           -> CannotCancelCompleted
  4. departure is at least 2 hours away            -> TooLateToCancel

Existence is checked by the caller when loading the reservation. Departure
is midnight UTC at the start of the travel date, since trips carry a date
only.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from app.core.exceptions import (
    AlreadyCancelled, CannotCancelCompleted, TooLateToCancel, Unauthorized,
)
from app.models.reservation import Reservation, STATUS_CANCELLED, STATUS_COMPLETED

CANCELLATION_WINDOW = timedelta(hours=2)


def departure_time(travel_date: date) -> datetime:
    return datetime.combine(travel_date, time.min, tzinfo=timezone.utc)


def check_window(departure: datetime, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    if departure - now < CANCELLATION_WINDOW:
        raise TooLateToCancel(int(CANCELLATION_WINDOW.total_seconds() // 3600))


def check_status(status: str) -> None:
    if status == STATUS_CANCELLED:
        raise AlreadyCancelled()
    if status == STATUS_COMPLETED:
        raise CannotCancelCompleted()


def ensure_cancellable(
    reservation: Reservation,
    requester_id: int,
    now: Optional[datetime] = None,
) -> None:
    if reservation.user_id != requester_id:
        raise Unauthorized("You can only cancel your own bookings")
    check_status(reservation.status)
    check_window(departure_time(reservation.travel_date), now)
