"""
Booking endpoints with ledger-guarded seat reservation.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.middleware import client_address
from app.core.security import Principal, get_current_principal
from app.db.session import get_db
from app.schemas.availability import AvailabilityResponse
from app.schemas.reservation import (
    CancelRequest, ReservationCreate, ReservationListResponse, ReservationResponse,
    ReservationStatus, StatusUpdate,
)
from app.services import booking_service, inventory_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    vehicle_id: int = Query(..., gt=0),
    travel_date: date = Query(...),
    seats: Optional[list[int]] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Seat map for a vehicle and date. Public, never cached."""
    return await inventory_service.check_availability(db, vehicle_id, travel_date, seats)


@router.post("/", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: ReservationCreate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve seats on a vehicle for a travel date.

    Returns 409 with the list of taken seats if any requested seat is held by
    another active booking, including one committed a moment earlier by a
    concurrent request.
    """
    request_info = {
        "ip": client_address(request),
        "user_agent": request.headers.get("user-agent"),
    }
    return await booking_service.create_booking(db, principal, booking_data, request_info)


@router.get("/my-bookings", response_model=ReservationListResponse)
async def list_my_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    user_id: Optional[int] = Query(None, description="Admins only: list another user's bookings"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    owner_id = user_id if principal.is_admin and user_id else principal.id
    items, pagination = await booking_service.list_bookings(
        db, owner_id, page, limit, status_filter, from_date, to_date
    )
    return ReservationListResponse(items=items, pagination=pagination)


@router.get("/{slug}", response_model=ReservationResponse)
async def get_booking(
    slug: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, slug, principal)


@router.patch("/{slug}/status", response_model=ReservationResponse)
async def update_booking_status(
    slug: str,
    changes: StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Move a booking through pending -> confirmed -> completed, or update payment fields."""
    return await booking_service.update_status(db, slug, changes, principal)


@router.patch("/{slug}/cancel", response_model=ReservationResponse)
async def cancel_booking(
    slug: str,
    cancel_data: CancelRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Cancel your own booking up to 2 hours before travel; its seats are released at once."""
    return await booking_service.cancel_booking(db, slug, principal, cancel_data.reason)
