"""
Pydantic schemas for the seat availability preview.
"""

from datetime import date

from pydantic import BaseModel


class SeatState(BaseModel):
    seat_number: int
    is_available: bool
    is_selected: bool = False


class AvailabilityResponse(BaseModel):
    vehicle_id: int
    travel_date: date
    capacity: int
    occupied_seats: list[int]
    free_count: int
    # Keys are seat numbers; JSON turns them into strings
    seats: dict[int, bool]
    seat_map: list[SeatState]
    requested_unavailable: list[int]
    available: bool
