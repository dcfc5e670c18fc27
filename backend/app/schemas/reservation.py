"""
Pydantic schemas for reservation request/response validation.

Shape checks only (types, lengths, email syntax). Business rules such as seat
ranges, seat count, duplicates and passenger parity are enforced by the
booking service so that each failure carries its own error code.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

ReservationStatus = Literal["pending", "confirmed", "cancelled", "completed"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["cash", "card", "upi", "wallet"]


class ReservationCreate(BaseModel):
    vehicle_id: int = Field(..., gt=0)
    seat_numbers: list[int]
    travel_date: date
    contact_phone: str = Field(..., min_length=10, max_length=15)
    contact_email: EmailStr
    passenger_names: list[str]
    boarding_point: Optional[str] = Field(None, max_length=200)
    dropping_point: Optional[str] = Field(None, max_length=200)
    special_requests: Optional[str] = Field(None, max_length=1000)
    payment_method: Optional[PaymentMethod] = None

    @field_validator("passenger_names")
    @classmethod
    def names_are_real(cls, names: list[str]) -> list[str]:
        cleaned = [name.strip() for name in names]
        if any(len(name) < 2 for name in cleaned):
            raise ValueError("Passenger names must have at least 2 characters")
        return cleaned


class StatusUpdate(BaseModel):
    status: Optional[ReservationStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    cancellation_reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def something_to_change(self) -> "StatusUpdate":
        if self.status is None and self.payment_status is None and self.payment_method is None:
            raise ValueError("Provide a status, payment_status or payment_method")
        return self


class CancelRequest(BaseModel):
    reason: str = Field("User cancellation", min_length=1, max_length=1000)


class RouteSummary(BaseModel):
    id: int
    route_name: str
    origin: str
    destination: str

    model_config = {"from_attributes": True}


class VehicleSummary(BaseModel):
    id: int
    vehicle_number: str
    vehicle_type: str
    capacity: int
    route: RouteSummary

    model_config = {"from_attributes": True}


class ReservationResponse(BaseModel):
    id: int
    slug: str
    booking_reference: str
    user_id: int
    vehicle_id: int
    travel_date: date
    seat_numbers: list[int]
    passenger_names: list[str]
    contact_phone: str
    contact_email: str
    boarding_point: Optional[str]
    dropping_point: Optional[str]
    special_requests: Optional[str]
    fare_per_seat: Decimal
    base_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: str
    payment_status: str
    payment_method: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    created_at: datetime
    vehicle: VehicleSummary

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


class ReservationListResponse(BaseModel):
    items: list[ReservationResponse]
    pagination: Pagination
