"""
Read-only reports for administrators and drivers.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.db.session import store_guard
from app.models.reservation import (
    Reservation, STATUSES, STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED,
    STATUS_CANCELLED, PAYMENT_PAID,
)
from app.models.route import Route
from app.models.vehicle import Vehicle
from app.services.vehicle_service import get_vehicle

MANIFEST_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED)


def _percent(part: int, whole: int) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"))


def _created_between(query, from_date: Optional[date], to_date: Optional[date]):
    if from_date:
        query = query.where(
            Reservation.created_at >= datetime.combine(from_date, time.min, tzinfo=timezone.utc)
        )
    if to_date:
        query = query.where(
            Reservation.created_at
            < datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )
    return query


async def booking_stats(
    db: AsyncSession,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> dict:
    """Counts per status and paid revenue for bookings created in the range."""
    counts_query = _created_between(
        select(Reservation.status, func.count(Reservation.id)).group_by(Reservation.status),
        from_date,
        to_date,
    )
    revenue_query = _created_between(
        select(func.coalesce(func.sum(Reservation.total_amount), 0)).where(
            Reservation.payment_status == PAYMENT_PAID
        ),
        from_date,
        to_date,
    )

    async with store_guard(db, "booking_stats"):
        counts = {status: 0 for status in STATUSES}
        for status, count in (await db.execute(counts_query)).all():
            counts[status] = count
        revenue = (await db.execute(revenue_query)).scalar() or 0

    total = sum(counts.values())
    return {
        "total_bookings": total,
        "pending_bookings": counts[STATUS_PENDING],
        "confirmed_bookings": counts[STATUS_CONFIRMED],
        "cancelled_bookings": counts[STATUS_CANCELLED],
        "completed_bookings": counts[STATUS_COMPLETED],
        "total_revenue": Decimal(str(revenue)).quantize(Decimal("0.01")),
        "cancellation_rate": _percent(counts[STATUS_CANCELLED], total),
        "confirmation_rate": _percent(counts[STATUS_CONFIRMED], total),
    }


async def popular_routes(db: AsyncSession, limit: int = 10) -> list[dict]:
    """Routes ordered by how many reservations their vehicles carried."""
    booking_count = func.count(Reservation.id).label("booking_count")
    query = (
        select(Route, booking_count, func.coalesce(func.sum(Reservation.total_amount), 0))
        .join(Vehicle, Vehicle.route_id == Route.id)
        .join(Reservation, Reservation.vehicle_id == Vehicle.id)
        .group_by(Route.id)
        .order_by(booking_count.desc(), Route.id)
        .limit(limit)
    )
    async with store_guard(db, "popular_routes"):
        rows = (await db.execute(query)).all()

    return [
        {
            "route": route,
            "booking_count": count,
            "total_revenue": Decimal(str(revenue)).quantize(Decimal("0.01")),
        }
        for route, count, revenue in rows
    ]


async def vehicle_manifest(db: AsyncSession, vehicle_id: int, travel_date: date) -> dict:
    """Passenger manifest for one vehicle and travel date."""
    async with store_guard(db, "vehicle_manifest"):
        await get_vehicle(db, vehicle_id)
        result = await db.execute(
            select(Reservation)
            .options(selectinload(Reservation.vehicle).selectinload(Vehicle.route))
            .where(
                Reservation.vehicle_id == vehicle_id,
                Reservation.travel_date == travel_date,
                Reservation.status.in_(MANIFEST_STATUSES),
            )
            .order_by(Reservation.id)
        )
        bookings = list(result.scalars().all())

    paid = [b.total_amount for b in bookings if b.payment_status == PAYMENT_PAID]
    return {
        "bookings": bookings,
        "summary": {
            "total_bookings": len(bookings),
            "total_passengers": sum(len(b.seat_numbers) for b in bookings),
            "confirmed_bookings": sum(1 for b in bookings if b.status == STATUS_CONFIRMED),
            "pending_bookings": sum(1 for b in bookings if b.status == STATUS_PENDING),
            "total_revenue": sum(paid, Decimal("0.00")),
        },
    }
