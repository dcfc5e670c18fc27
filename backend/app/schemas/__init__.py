from app.schemas.reservation import (
    ReservationCreate, StatusUpdate, CancelRequest,
    ReservationResponse, ReservationListResponse, Pagination,
)
from app.schemas.availability import AvailabilityResponse, SeatState
from app.schemas.admin import BookingStats, PopularRoute, VehicleManifest

__all__ = [
    "ReservationCreate", "StatusUpdate", "CancelRequest",
    "ReservationResponse", "ReservationListResponse", "Pagination",
    "AvailabilityResponse", "SeatState",
    "BookingStats", "PopularRoute", "VehicleManifest",
]
