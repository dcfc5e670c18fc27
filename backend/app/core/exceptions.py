"""
Domain errors raised by the reservation services.

Each error is an HTTPException so routers can let it propagate untouched,
while service-level callers (tests, workers) can still catch the concrete
class. The response body always has the same shape:

    {"detail": {"code": ..., "kind": ..., "message": ..., "field": ...}}

Kinds tell the caller what to do next:
  - validation:    fix the input, never retried automatically
  - conflict:      re-query state before retrying
  - authorization: wrong owner or role, never retried
  - transient:     store trouble, safe to retry with backoff
"""

from enum import Enum
from typing import Any, Iterable, Optional

from fastapi import HTTPException, status


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    AUTHORIZATION = "authorization"
    TRANSIENT = "transient"


class BookingError(HTTPException):
    code = "booking_error"
    kind = ErrorKind.VALIDATION
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        headers: Optional[dict] = None,
        **extra: Any,
    ):
        self.message = message
        self.field = field
        self.extra = extra
        detail = {
            "code": self.code,
            "kind": self.kind.value,
            "message": message,
            "field": field,
            **extra,
        }
        super().__init__(status_code=self.http_status, detail=detail, headers=headers)

    def __str__(self) -> str:
        return self.message


# Validation ------------------------------------------------------------------

class VehicleNotFound(BookingError):
    code = "vehicle_not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, vehicle_id: int):
        super().__init__(f"Vehicle {vehicle_id} not found", field="vehicle_id")


class VehicleNotSellable(BookingError):
    code = "vehicle_not_sellable"

    def __init__(self, vehicle_id: int, vehicle_status: str):
        super().__init__(
            f"Vehicle {vehicle_id} is currently {vehicle_status} and not available for booking",
            field="vehicle_id",
        )


class SeatOutOfRange(BookingError):
    code = "seat_out_of_range"

    def __init__(self, seat: int, capacity: int):
        super().__init__(
            f"Seat number {seat} is outside vehicle capacity of {capacity}",
            field="seat_numbers",
            seat=seat,
            capacity=capacity,
        )


class InvalidSeatCount(BookingError):
    code = "invalid_seat_count"

    def __init__(self, count: int, maximum: int):
        super().__init__(
            f"Between 1 and {maximum} seats must be selected, got {count}",
            field="seat_numbers",
        )


class DuplicateSeat(BookingError):
    code = "duplicate_seat"

    def __init__(self, seats: Iterable[int]):
        seats = sorted(seats)
        super().__init__(
            f"Seats {', '.join(map(str, seats))} were requested more than once",
            field="seat_numbers",
            seats=seats,
        )


class PassengerCountMismatch(BookingError):
    code = "passenger_count_mismatch"

    def __init__(self, passengers: int, seats: int):
        super().__init__(
            f"{passengers} passenger names supplied for {seats} seats",
            field="passenger_names",
        )


class PastTravelDate(BookingError):
    code = "past_travel_date"

    def __init__(self, travel_date):
        super().__init__(
            f"Travel date {travel_date.isoformat()} is in the past",
            field="travel_date",
        )


class ReservationNotFound(BookingError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, slug: str):
        super().__init__(f"Booking {slug} not found", field="slug")


class ReservationRejected(BookingError):
    code = "reservation_rejected"

    def __init__(self, reason: str):
        super().__init__(f"The reservation store rejected this booking: {reason}")


class TooLateToCancel(BookingError):
    code = "too_late_to_cancel"

    def __init__(self, window_hours: int):
        super().__init__(
            f"Cannot cancel booking less than {window_hours} hours before travel",
            field="travel_date",
        )


# Authorization ---------------------------------------------------------------

class Unauthorized(BookingError):
    code = "unauthorized"
    kind = ErrorKind.AUTHORIZATION
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "You can only access your own bookings"):
        super().__init__(message)


# Conflict --------------------------------------------------------------------

class SeatsUnavailable(BookingError):
    code = "seats_unavailable"
    kind = ErrorKind.CONFLICT
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, seats: Iterable[int]):
        self.seats = sorted(set(seats))
        super().__init__(
            f"Seats {', '.join(map(str, self.seats))} are already booked",
            field="seat_numbers",
            seats=self.seats,
        )


class InvalidTransition(BookingError):
    code = "invalid_transition"
    kind = ErrorKind.CONFLICT
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            field="status",
            current=current,
            requested=requested,
        )


class AlreadyCancelled(BookingError):
    code = "already_cancelled"
    kind = ErrorKind.CONFLICT
    http_status = status.HTTP_409_CONFLICT

    def __init__(self):
        super().__init__("Booking is already cancelled", field="status")


class CannotCancelCompleted(BookingError):
    code = "cannot_cancel_completed"
    kind = ErrorKind.CONFLICT
    http_status = status.HTTP_409_CONFLICT

    def __init__(self):
        super().__init__("Cannot cancel completed booking", field="status")


# Transient -------------------------------------------------------------------

class StoreUnavailable(BookingError):
    code = "store_unavailable"
    kind = ErrorKind.TRANSIENT
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, operation: str, retry_after: int = 1):
        super().__init__(
            f"Reservation store unavailable during {operation}, please retry",
            headers={"Retry-After": str(retry_after)},
            operation=operation,
        )
