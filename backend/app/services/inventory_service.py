"""
Inventory reads: which seats of a vehicle are held on a travel date.

Seats are held by active (pending / confirmed) reservations and each held
seat has exactly one row in the seat-allocation ledger. Reads take the
caller's session, so inside the booking transaction they run at the same
isolation level as the insert that follows. Nothing here is cached.
"""

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import store_guard
from app.models.reservation import Reservation, ACTIVE_STATUSES
from app.models.seat_allocation import SeatAllocation
from app.services.vehicle_service import get_vehicle


async def occupied_seats(db: AsyncSession, vehicle_id: int, travel_date: date) -> set[int]:
    """Union of the seats held by active reservations for (vehicle, date)."""
    result = await db.execute(
        select(SeatAllocation.seat_number)
        .join(Reservation, Reservation.id == SeatAllocation.reservation_id)
        .where(
            SeatAllocation.vehicle_id == vehicle_id,
            SeatAllocation.travel_date == travel_date,
            Reservation.status.in_(ACTIVE_STATUSES),
        )
    )
    return set(result.scalars().all())


async def find_claimed_seats(
    db: AsyncSession,
    vehicle_id: int,
    travel_date: date,
    seats: Iterable[int],
) -> set[int]:
    """Which of `seats` currently have a ledger row, whoever holds them."""
    seats = list(seats)
    if not seats:
        return set()
    result = await db.execute(
        select(SeatAllocation.seat_number).where(
            SeatAllocation.vehicle_id == vehicle_id,
            SeatAllocation.travel_date == travel_date,
            SeatAllocation.seat_number.in_(seats),
        )
    )
    return set(result.scalars().all())


async def check_availability(
    db: AsyncSession,
    vehicle_id: int,
    travel_date: date,
    seats: Optional[list[int]] = None,
) -> dict:
    """Seat map preview for a vehicle and date, optionally checking `seats`."""
    async with store_guard(db, "check_availability"):
        vehicle = await get_vehicle(db, vehicle_id)
        occupied = await occupied_seats(db, vehicle_id, travel_date)
    requested = set(seats or [])

    seat_flags = {n: n not in occupied for n in range(1, vehicle.capacity + 1)}
    unavailable = sorted(
        s for s in requested if s in occupied or s < 1 or s > vehicle.capacity
    )

    return {
        "vehicle_id": vehicle.id,
        "travel_date": travel_date,
        "capacity": vehicle.capacity,
        "occupied_seats": sorted(occupied),
        "free_count": sum(seat_flags.values()),
        "seats": seat_flags,
        "seat_map": [
            {"seat_number": n, "is_available": free, "is_selected": n in requested}
            for n, free in seat_flags.items()
        ],
        "requested_unavailable": unavailable,
        "available": not unavailable,
    }
