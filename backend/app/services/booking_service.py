"""
Booking lifecycle: creation, lookup, listing, status changes, cancellation.

CONCURRENCY STRATEGY: Seat-Allocation Ledger
============================================

Problem:
  Two travellers submit overlapping seats for the same vehicle and date.
  Both transactions read the seats as free, both insert, both commit.
  Result: one seat, two passengers.

Solution:
  Every seat held by an active reservation has one row in seat_allocations,
  protected by UNIQUE(vehicle_id, travel_date, seat_number).

  1. Read occupied seats inside the booking transaction and fail fast with
     SeatsUnavailable if the request overlaps them
  2. INSERT the reservation and one ledger row per requested seat
  3. If a concurrent booking got there first, the ledger insert raises
     IntegrityError -> rollback, re-read which seats are now claimed and
     report them as SeatsUnavailable

  Bookings on different seats of the same trip never wait on each other,
  and the guarantee survives restarts and multiple app instances because it
  lives in the database.

Status changes use a conditional UPDATE ... WHERE status = <observed>.
If another request changed the status first, zero rows match and we re-read
and re-check against the state that won. Moving to cancelled or completed
deletes the ledger rows in the same transaction, so released seats are
immediately bookable.
"""

import time
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    BookingError, DuplicateSeat, InvalidSeatCount, InvalidTransition,
    PassengerCountMismatch, PastTravelDate, ReservationNotFound, ReservationRejected,
    SeatOutOfRange,
    SeatsUnavailable, StoreUnavailable, Unauthorized,
)
from app.core.logging import get_logger
from app.core.metrics import (
    booking_latency, record_booking_attempt, record_cancellation, record_transition,
    seat_ledger_conflicts,
)
from app.core.security import Principal
from app.db.session import store_guard
from app.models.reservation import (
    Reservation, STATUS_CANCELLED, STATUS_CONFIRMED, TERMINAL_STATUSES,
    generate_reference, generate_slug, integrity_hash,
)
from app.models.seat_allocation import SeatAllocation
from app.models.vehicle import Vehicle
from app.schemas.reservation import ReservationCreate, StatusUpdate
from app.services import cancellation_policy, inventory_service, notification_service
from app.services.fare_service import calculate_fare
from app.services.state_machine import is_terminal, validate_transition
from app.services.vehicle_service import get_sellable_vehicle

logger = get_logger(__name__)

MAX_SEATS_PER_BOOKING = 6
MAX_CREATE_ATTEMPTS = 3
MAX_UPDATE_ATTEMPTS = 3

# Constraint names as PostgreSQL and SQLite report them
SEAT_CONSTRAINT_MARKERS = ("uq_seat_allocation", "UNIQUE constraint failed: seat_allocations.")
IDENTIFIER_CONSTRAINT_MARKERS = (
    "reservations_slug_key",
    "reservations_booking_reference_key",
    "reservations.slug",
    "reservations.booking_reference",
)


def validate_request(vehicle: Vehicle, data: ReservationCreate, today: date) -> None:
    """Booking preconditions after the vehicle lookup, in order."""
    seats = data.seat_numbers

    if seats:
        if max(seats) > vehicle.capacity:
            raise SeatOutOfRange(max(seats), vehicle.capacity)
        if min(seats) < 1:
            raise SeatOutOfRange(min(seats), vehicle.capacity)

    if not 1 <= len(seats) <= MAX_SEATS_PER_BOOKING:
        raise InvalidSeatCount(len(seats), MAX_SEATS_PER_BOOKING)

    duplicates = {s for s in seats if seats.count(s) > 1}
    if duplicates:
        raise DuplicateSeat(duplicates)

    if len(data.passenger_names) != len(seats):
        raise PassengerCountMismatch(len(data.passenger_names), len(seats))

    if data.travel_date < today:
        raise PastTravelDate(data.travel_date)


def _reservation_query():
    return select(Reservation).options(
        selectinload(Reservation.vehicle).selectinload(Vehicle.route)
    )


async def _load(db: AsyncSession, *criteria) -> Optional[Reservation]:
    result = await db.execute(
        _reservation_query().where(*criteria).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_by_slug(db: AsyncSession, slug: str) -> Reservation:
    reservation = await _load(db, Reservation.slug == slug)
    if not reservation:
        raise ReservationNotFound(slug)
    return reservation


def _ensure_access(reservation: Reservation, principal: Principal) -> None:
    if not principal.is_admin and reservation.user_id != principal.id:
        raise Unauthorized()


# Creation -------------------------------------------------------------------

def _classify_violation(error: IntegrityError) -> str:
    """Name the constraint behind an IntegrityError: seat, identifier, or a reason."""
    message = str(error.orig)
    if any(marker in message for marker in SEAT_CONSTRAINT_MARKERS):
        return "seat"
    if any(marker in message for marker in IDENTIFIER_CONSTRAINT_MARKERS):
        return "identifier"
    if "foreign key" in message.lower():
        return "unknown user or vehicle"
    return "constraint violation"



async def create_booking(
    db: AsyncSession,
    principal: Principal,
    data: ReservationCreate,
    request_info: Optional[dict] = None,
    today: Optional[date] = None,
) -> Reservation:
    """
    Create a pending reservation for the requested seats.
    The reservation is committed before the notification is scheduled.
    """
    start = time.perf_counter()
    try:
        reservation = await _insert_reservation(db, principal, data, request_info or {}, today)
    except SeatsUnavailable:
        record_booking_attempt("conflict")
        raise
    except StoreUnavailable:
        record_booking_attempt("error")
        raise
    except BookingError:
        record_booking_attempt("rejected")
        raise
    finally:
        booking_latency.observe(time.perf_counter() - start)

    record_booking_attempt("success")
    notification_service.dispatch(notification_service.EVENT_CREATED, reservation)
    return reservation


async def _insert_reservation(
    db: AsyncSession,
    principal: Principal,
    data: ReservationCreate,
    request_info: dict,
    today: Optional[date],
) -> Reservation:
    today = today or datetime.now(timezone.utc).date()
    vehicle_id, travel_date = data.vehicle_id, data.travel_date
    seats = sorted(data.seat_numbers)

    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        async with store_guard(db, "create_booking"):
            vehicle = await get_sellable_vehicle(db, vehicle_id)
            validate_request(vehicle, data, today)

            occupied = await inventory_service.occupied_seats(db, vehicle_id, travel_date)
            conflicting = occupied.intersection(seats)
            if conflicting:
                logger.warning(
                    "booking_seats_unavailable",
                    vehicle_id=vehicle_id,
                    travel_date=travel_date.isoformat(),
                    seats=sorted(conflicting),
                )
                await db.rollback()
                raise SeatsUnavailable(conflicting)

            fare = calculate_fare(len(seats), vehicle.route.fare)
            slug = generate_slug()
            reservation = Reservation(
                slug=slug,
                booking_reference=generate_reference(),
                user_id=principal.id,
                vehicle=vehicle,
                travel_date=travel_date,
                seat_numbers=seats,
                passenger_names=list(data.passenger_names),
                contact_phone=data.contact_phone,
                contact_email=str(data.contact_email),
                boarding_point=data.boarding_point,
                dropping_point=data.dropping_point,
                special_requests=data.special_requests,
                payment_method=data.payment_method,
                fare_per_seat=vehicle.route.fare,
                base_amount=fare.base,
                tax_amount=fare.tax,
                total_amount=fare.total,
                booking_ip=request_info.get("ip"),
                user_agent=request_info.get("user_agent"),
                integrity_hash=integrity_hash(slug, principal.id, vehicle_id),
                allocations=[
                    SeatAllocation(vehicle_id=vehicle_id, travel_date=travel_date, seat_number=s)
                    for s in seats
                ],
            )
            db.add(reservation)

            try:
                await db.flush()
            except IntegrityError as e:
                await db.rollback()
                violation = _classify_violation(e)
                if violation == "identifier":
                    logger.info(
                        "booking_retry",
                        vehicle_id=vehicle_id,
                        attempt=attempt,
                        reason="identifier_collision",
                    )
                    continue
                if violation != "seat":
                    logger.error(
                        "booking_integrity_error",
                        vehicle_id=vehicle_id,
                        user_id=principal.id,
                        error=str(e.orig),
                    )
                    raise ReservationRejected(violation) from e

                seat_ledger_conflicts.inc()
                claimed = await inventory_service.find_claimed_seats(
                    db, vehicle_id, travel_date, seats
                )
                if claimed:
                    logger.warning(
                        "booking_seat_race_lost",
                        vehicle_id=vehicle_id,
                        travel_date=travel_date.isoformat(),
                        seats=sorted(claimed),
                        attempt=attempt,
                    )
                    raise SeatsUnavailable(claimed) from e
                logger.info(
                    "booking_retry",
                    vehicle_id=vehicle_id,
                    attempt=attempt,
                    reason="integrity_conflict",
                )
                continue

            reservation_id = reservation.id
            await db.commit()
            created = await _load(db, Reservation.id == reservation_id)

        logger.info(
            "booking_created",
            slug=created.slug,
            booking_reference=created.booking_reference,
            user_id=principal.id,
            vehicle_id=vehicle_id,
            travel_date=travel_date.isoformat(),
            seats=seats,
            total_amount=str(created.total_amount),
            attempt=attempt,
        )
        return created

    # Every attempt collided but the claimant was gone on re-read
    logger.error("booking_attempts_exhausted", vehicle_id=vehicle_id, seats=seats)
    raise StoreUnavailable("create_booking")


# Reads ----------------------------------------------------------------------

async def get_booking(db: AsyncSession, slug: str, principal: Principal) -> Reservation:
    async with store_guard(db, "get_booking"):
        reservation = await _load_by_slug(db, slug)
    _ensure_access(reservation, principal)
    return reservation


async def list_bookings(
    db: AsyncSession,
    user_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> tuple[list[Reservation], dict]:
    """
    Paginated reservations, newest first. `user_id=None` lists everybody's
    bookings and is only reachable through admin routes.
    """
    query = _reservation_query()
    if user_id is not None:
        query = query.where(Reservation.user_id == user_id)
    if status:
        query = query.where(Reservation.status == status)
    if from_date:
        query = query.where(Reservation.travel_date >= from_date)
    if to_date:
        query = query.where(Reservation.travel_date <= to_date)

    async with store_guard(db, "list_bookings"):
        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        result = await db.execute(
            query
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(result.scalars().all())

    pagination = {
        "current_page": page,
        "total_pages": -(-total // limit),
        "total_items": total,
        "items_per_page": limit,
        "has_next_page": page * limit < total,
        "has_prev_page": page > 1,
    }
    return items, pagination


# Status changes -------------------------------------------------------------

async def _apply_change(
    db: AsyncSession,
    reservation: Reservation,
    values: dict,
) -> bool:
    """
    Write `values` only if the status is still the one we validated against.
    Releases ledger rows when the new status is terminal. Returns False if
    another request changed the status first.
    """
    result = await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation.id, Reservation.status == reservation.status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        return False

    if values.get("status") in TERMINAL_STATUSES:
        await db.execute(
            delete(SeatAllocation).where(SeatAllocation.reservation_id == reservation.id)
        )
    await db.commit()
    return True


async def update_status(
    db: AsyncSession,
    slug: str,
    changes: StatusUpdate,
    principal: Principal,
) -> Reservation:
    """
    Move a reservation through the state machine and/or update its payment
    fields. Owners and admins only; payment corrections on a cancelled or
    completed booking are admin-only.
    """
    requested = changes.status
    payment_changes = {
        k: v for k, v in (
            ("payment_status", changes.payment_status),
            ("payment_method", changes.payment_method),
        ) if v is not None
    }

    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        async with store_guard(db, "update_status"):
            reservation = await _load_by_slug(db, slug)
            _ensure_access(reservation, principal)
            previous = reservation.status

            if requested:
                validate_transition(previous, requested)
            if payment_changes and is_terminal(previous) and not principal.is_admin:
                raise Unauthorized(
                    "Payment details of closed bookings can only be corrected by an administrator"
                )

            now = datetime.now(timezone.utc)
            values = dict(payment_changes)
            if requested:
                values["status"] = requested
                if requested == STATUS_CONFIRMED:
                    values["confirmed_at"] = now
                elif requested == STATUS_CANCELLED:
                    values["cancelled_at"] = now
                    if changes.cancellation_reason:
                        values["cancellation_reason"] = changes.cancellation_reason

            if not await _apply_change(db, reservation, values):
                logger.info("booking_status_race", slug=slug, attempt=attempt, observed=previous)
                continue

            updated = await _load_by_slug(db, slug)

        if requested:
            record_transition(requested)
        logger.info(
            "booking_status_updated",
            slug=slug,
            from_status=previous,
            to_status=updated.status,
            payment_status=updated.payment_status,
            by=principal.id,
            admin=principal.is_admin,
        )
        event = (
            notification_service.EVENT_CANCELLED
            if requested == STATUS_CANCELLED
            else notification_service.EVENT_STATUS_CHANGED
        )
        notification_service.dispatch(event, updated, previous_status=previous)
        return updated

    raise InvalidTransition(previous, requested or previous)


async def cancel_booking(
    db: AsyncSession,
    slug: str,
    principal: Principal,
    reason: str = "User cancellation",
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Cancel the requester's own booking and release its seats.
    Of two concurrent cancellations only one succeeds; the other sees
    AlreadyCancelled.
    """
    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        async with store_guard(db, "cancel_booking"):
            reservation = await _load_by_slug(db, slug)
            try:
                cancellation_policy.ensure_cancellable(reservation, principal.id, now)
            except BookingError as e:
                record_cancellation(False)
                logger.info("booking_cancel_rejected", slug=slug, reason=e.code)
                raise

            applied = await _apply_change(
                db,
                reservation,
                {
                    "status": STATUS_CANCELLED,
                    "cancelled_at": datetime.now(timezone.utc),
                    "cancellation_reason": reason,
                },
            )
            if not applied:
                logger.info("booking_cancel_race", slug=slug, attempt=attempt)
                continue

            cancelled = await _load_by_slug(db, slug)

        record_cancellation(True)
        record_transition(STATUS_CANCELLED)
        logger.info(
            "booking_cancelled",
            slug=slug,
            user_id=principal.id,
            vehicle_id=cancelled.vehicle_id,
            travel_date=cancelled.travel_date.isoformat(),
            seats_released=cancelled.seat_numbers,
        )
        notification_service.dispatch(
            notification_service.EVENT_CANCELLED, cancelled, reason=reason
        )
        return cancelled

    raise InvalidTransition(reservation.status, STATUS_CANCELLED)
