"""
Pydantic schemas for administrative and driver reports.
"""

from decimal import Decimal

from pydantic import BaseModel

from app.schemas.reservation import ReservationResponse, RouteSummary


class BookingStats(BaseModel):
    total_bookings: int
    pending_bookings: int
    confirmed_bookings: int
    cancelled_bookings: int
    completed_bookings: int
    total_revenue: Decimal
    cancellation_rate: Decimal
    confirmation_rate: Decimal


class PopularRoute(BaseModel):
    route: RouteSummary
    booking_count: int
    total_revenue: Decimal


class ManifestSummary(BaseModel):
    total_bookings: int
    total_passengers: int
    confirmed_bookings: int
    pending_bookings: int
    total_revenue: Decimal


class VehicleManifest(BaseModel):
    bookings: list[ReservationResponse]
    summary: ManifestSummary
