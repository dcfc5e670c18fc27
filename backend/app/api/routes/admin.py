"""
Administrative and driver endpoints: reports and cross-user listings.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import ROLE_ADMIN, ROLE_DRIVER, Principal, require_roles
from app.db.session import get_db
from app.schemas.admin import BookingStats, PopularRoute, VehicleManifest
from app.schemas.reservation import ReservationListResponse, ReservationStatus
from app.services import booking_service, report_service

router = APIRouter(prefix="/admin/bookings", tags=["Admin"])

admin_only = require_roles(ROLE_ADMIN)


@router.get("/", response_model=ReservationListResponse)
async def list_all_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    user_id: Optional[int] = Query(None),
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    items, pagination = await booking_service.list_bookings(
        db, user_id, page, limit, status_filter, from_date, to_date
    )
    return ReservationListResponse(items=items, pagination=pagination)


@router.get("/statistics", response_model=BookingStats)
async def get_booking_statistics(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await report_service.booking_stats(db, from_date, to_date)


@router.get("/popular-routes", response_model=list[PopularRoute])
async def get_popular_routes(
    limit: int = Query(10, ge=1, le=50),
    _: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await report_service.popular_routes(db, limit)


@router.get("/manifest", response_model=VehicleManifest)
async def get_vehicle_manifest(
    vehicle_id: int = Query(..., gt=0),
    travel_date: date = Query(...),
    _: Principal = Depends(require_roles(ROLE_ADMIN, ROLE_DRIVER)),
    db: AsyncSession = Depends(get_db),
):
    """Bookings on one vehicle and date, for drivers at boarding time."""
    return await report_service.vehicle_manifest(db, vehicle_id, travel_date)
