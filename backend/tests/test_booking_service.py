"""
Service-level tests for the booking lifecycle and its concurrency guarantees.

Attributes of ORM objects are read into locals right after creation: a
rejected booking rolls the session back, which expires everything in it.
"""

import asyncio
import os
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import InvalidRequestError

from app.core.exceptions import (
    AlreadyCancelled, CannotCancelCompleted, DuplicateSeat, InvalidSeatCount, InvalidTransition,
    PassengerCountMismatch, PastTravelDate, ReservationNotFound, ReservationRejected, SeatOutOfRange,
    SeatsUnavailable, StoreUnavailable, TooLateToCancel, Unauthorized, VehicleNotFound,
    VehicleNotSellable,
)
from app.core.security import Principal
from app.models.reservation import Reservation
from app.models.route import Route
from app.models.seat_allocation import SeatAllocation
from app.schemas.reservation import StatusUpdate
from app.services import booking_service, inventory_service
from app.services.cancellation_policy import departure_time


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


# Creation -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_booking_holds_seats(db_session, principal, booking_request, test_vehicle, travel_date):
    vehicle_id = test_vehicle.id
    reservation = await booking_service.create_booking(
        db_session, principal, booking_request([5, 4], ["Asha Rai", "Bikash Thapa"])
    )

    assert reservation.status == "pending"
    assert reservation.payment_status == "pending"
    assert reservation.seat_numbers == [4, 5]
    assert reservation.passenger_names == ["Asha Rai", "Bikash Thapa"]
    assert reservation.slug.startswith("BK-")
    assert len(reservation.booking_reference) == 16
    assert reservation.fare_per_seat == Decimal("500.00")
    assert reservation.base_amount == Decimal("1000.00")
    assert reservation.tax_amount == Decimal("180.00")
    assert reservation.total_amount == Decimal("1180.00")
    assert reservation.vehicle.route.route_code == "KTM-PKR"

    occupied = await inventory_service.occupied_seats(db_session, vehicle_id, travel_date)
    assert occupied == {4, 5}
    assert await _count(db_session, SeatAllocation) == 2


@pytest.mark.asyncio
async def test_availability_round_trip(db_session, principal, booking_request, test_vehicle, travel_date):
    vehicle_id = test_vehicle.id
    created = await booking_service.create_booking(db_session, principal, booking_request([4, 5]))
    slug = created.slug

    seat_map = await inventory_service.check_availability(db_session, vehicle_id, travel_date)
    assert seat_map["occupied_seats"] == [4, 5]
    assert seat_map["free_count"] == 18
    assert seat_map["seats"] == {n: n not in (4, 5) for n in range(1, 21)}

    await booking_service.cancel_booking(db_session, slug, principal)

    seat_map = await inventory_service.check_availability(db_session, vehicle_id, travel_date)
    assert seat_map["occupied_seats"] == []
    assert seat_map["free_count"] == 20


@pytest.mark.asyncio
async def test_overlapping_request_names_taken_seats(db_session, principal, booking_request):
    await booking_service.create_booking(db_session, principal, booking_request([4, 5]))

    with pytest.raises(SeatsUnavailable) as exc_info:
        await booking_service.create_booking(db_session, principal, booking_request([5, 6]))

    assert exc_info.value.seats == [5]
    assert exc_info.value.detail["code"] == "seats_unavailable"
    assert exc_info.value.detail["kind"] == "conflict"
    assert await _count(db_session, Reservation) == 1


@pytest.mark.asyncio
async def test_same_seat_on_another_date_is_free(db_session, principal, booking_request, travel_date):
    await booking_service.create_booking(db_session, principal, booking_request([1]))
    next_day = (travel_date + timedelta(days=1)).isoformat()

    again = await booking_service.create_booking(
        db_session, principal, booking_request([1], travel_date=next_day)
    )
    assert again.seat_numbers == [1]


@pytest.mark.asyncio
async def test_passenger_mismatch_writes_nothing(db_session, principal, booking_request):
    with pytest.raises(PassengerCountMismatch):
        await booking_service.create_booking(
            db_session, principal, booking_request([1, 2], ["Only One"])
        )

    assert await _count(db_session, Reservation) == 0
    assert await _count(db_session, SeatAllocation) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "seats,error",
    [
        ([0], SeatOutOfRange),
        ([21], SeatOutOfRange),
        ([], InvalidSeatCount),
        ([1, 2, 3, 4, 5, 6, 7], InvalidSeatCount),
        ([3, 3], DuplicateSeat),
    ],
)
async def test_seat_rules(db_session, principal, booking_request, seats, error):
    with pytest.raises(error):
        await booking_service.create_booking(db_session, principal, booking_request(seats))


@pytest.mark.asyncio
async def test_range_is_checked_before_duplicates(db_session, principal, booking_request):
    with pytest.raises(SeatOutOfRange) as exc_info:
        await booking_service.create_booking(
            db_session, principal, booking_request([25, 3, 3])
        )
    assert exc_info.value.detail["seat"] == 25
    assert exc_info.value.detail["capacity"] == 20


@pytest.mark.asyncio
async def test_count_is_checked_before_passenger_parity(db_session, principal, booking_request):
    with pytest.raises(InvalidSeatCount):
        await booking_service.create_booking(
            db_session, principal, booking_request([1, 2, 3, 4, 5, 6, 7], ["Solo Traveller"])
        )


@pytest.mark.asyncio
async def test_past_travel_date_rejected(db_session, principal, booking_request, today):
    yesterday = (today - timedelta(days=1)).isoformat()
    with pytest.raises(PastTravelDate):
        await booking_service.create_booking(
            db_session, principal, booking_request([1], travel_date=yesterday)
        )


@pytest.mark.asyncio
async def test_travel_today_is_allowed(db_session, principal, booking_request, today):
    reservation = await booking_service.create_booking(
        db_session, principal, booking_request([1], travel_date=today.isoformat()), today=today
    )
    assert reservation.travel_date == today


@pytest.mark.asyncio
async def test_unknown_vehicle(db_session, principal, booking_request):
    with pytest.raises(VehicleNotFound) as exc_info:
        await booking_service.create_booking(
            db_session, principal, booking_request([1], vehicle_id=9999)
        )
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_vehicle_in_maintenance_is_not_sellable(
    db_session, principal, booking_request, maintenance_vehicle
):
    with pytest.raises(VehicleNotSellable):
        await booking_service.create_booking(
            db_session, principal, booking_request([1], vehicle_id=maintenance_vehicle.id)
        )


@pytest.mark.asyncio
async def test_fare_is_captured_at_booking_time(db_session, principal, booking_request, test_route):
    route_id = test_route.id
    first = await booking_service.create_booking(db_session, principal, booking_request([1, 2]))
    slug = first.slug

    await db_session.execute(update(Route).where(Route.id == route_id).values(fare=Decimal("800.00")))
    await db_session.commit()
    db_session.expire_all()

    stored = await booking_service.get_booking(db_session, slug, principal)
    assert stored.fare_per_seat == Decimal("500.00")
    assert stored.total_amount == Decimal("1180.00")

    later = await booking_service.create_booking(db_session, principal, booking_request([3]))
    assert later.fare_per_seat == Decimal("800.00")
    assert later.total_amount == Decimal("944.00")


# Races ------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_user_is_rejected_not_reported_as_seat_conflict(
    db_session, booking_request
):
    ghost = Principal(id=9999, role="user")

    with pytest.raises(ReservationRejected) as exc_info:
        await booking_service.create_booking(db_session, ghost, booking_request([4, 5]))

    assert exc_info.value.status_code == 400
    assert exc_info.value.kind == "validation"
    assert await _count(db_session, Reservation) == 0
    assert await _count(db_session, SeatAllocation) == 0


@pytest.mark.asyncio
async def test_slug_collisions_are_retried_then_reported_as_store_failure(
    db_session, principal, booking_request, monkeypatch
):
    await booking_service.create_booking(db_session, principal, booking_request([1]))
    monkeypatch.setattr(booking_service, "generate_slug", lambda: "BK-COLLIDE")
    await booking_service.create_booking(db_session, principal, booking_request([2]))

    with pytest.raises(StoreUnavailable):
        await booking_service.create_booking(db_session, principal, booking_request([3]))

    assert await _count(db_session, Reservation) == 2
    assert await _count(db_session, SeatAllocation) == 2



@pytest.mark.asyncio
async def test_stale_availability_read_is_caught_by_ledger(
    db_session, principal, booking_request, monkeypatch
):
    await booking_service.create_booking(db_session, principal, booking_request([4, 5]))

    async def nothing_occupied(db, vehicle_id, travel_date):
        return set()

    monkeypatch.setattr(inventory_service, "occupied_seats", nothing_occupied)

    with pytest.raises(SeatsUnavailable) as exc_info:
        await booking_service.create_booking(db_session, principal, booking_request([5, 6]))

    assert exc_info.value.seats == [5]
    assert await _count(db_session, Reservation) == 1
    assert await _count(db_session, SeatAllocation) == 2


@pytest.mark.asyncio
async def test_concurrent_overlapping_bookings(session_factory, principal, booking_request):
    requests = [[8], [7, 8], [8, 9], [8, 10], [6, 8]]

    async def attempt(seats):
        async with session_factory() as session:
            reservation = await booking_service.create_booking(
                session, principal, booking_request(seats)
            )
            return reservation.seat_numbers

    results = await asyncio.gather(*(attempt(s) for s in requests), return_exceptions=True)

    won = [r for r in results if isinstance(r, list)]
    lost = [r for r in results if not isinstance(r, list)]
    assert len(won) == 1
    assert all(isinstance(e, (SeatsUnavailable, StoreUnavailable)) for e in lost)
    for error in lost:
        if isinstance(error, SeatsUnavailable):
            assert 8 in error.seats


@pytest.mark.asyncio
async def test_concurrent_disjoint_bookings_never_share_seats(
    session_factory, principal, booking_request, test_vehicle, travel_date
):
    vehicle_id = test_vehicle.id
    requests = [[1, 2], [3, 4], [5], [6, 7, 8]]

    async def attempt(seats):
        async with session_factory() as session:
            reservation = await booking_service.create_booking(
                session, principal, booking_request(seats)
            )
            return reservation.seat_numbers

    results = await asyncio.gather(*(attempt(s) for s in requests), return_exceptions=True)

    won = [r for r in results if isinstance(r, list)]
    assert all(isinstance(e, StoreUnavailable) for e in results if not isinstance(e, list))
    assert won

    async with session_factory() as session:
        occupied = await inventory_service.occupied_seats(session, vehicle_id, travel_date)
    held = [seat for seats in won for seat in seats]
    assert len(held) == len(set(held))
    assert occupied == set(held)
    if os.environ.get("TEST_DATABASE_URL", "").startswith("postgresql"):
        # Row-level locking: disjoint seats never block each other
        assert len(won) == len(requests)


# Reads ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_booking_owner_and_admin(
    db_session, principal, admin_principal, other_user, booking_request
):
    stranger = Principal(id=other_user.id)
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    slug = created.slug

    assert (await booking_service.get_booking(db_session, slug, principal)).slug == slug
    assert (await booking_service.get_booking(db_session, slug, admin_principal)).slug == slug
    with pytest.raises(Unauthorized):
        await booking_service.get_booking(db_session, slug, stranger)
    with pytest.raises(ReservationNotFound) as exc_info:
        await booking_service.get_booking(db_session, "BK-missing", principal)
    assert exc_info.value.detail["code"] == "not_found"


@pytest.mark.asyncio
async def test_unloaded_relationships_raise_instead_of_reading_empty(
    session_factory, principal, booking_request
):
    async with session_factory() as session:
        created = await booking_service.create_booking(session, principal, booking_request([2]))
        slug = created.slug

    async with session_factory() as session:
        stored = await booking_service.get_booking(session, slug, principal)
        assert stored.vehicle.route.fare == Decimal("500.00")
        with pytest.raises(InvalidRequestError):
            stored.allocations
        with pytest.raises(InvalidRequestError):
            stored.user


@pytest.mark.asyncio
async def test_list_bookings_paginates_newest_first(db_session, principal, booking_request):
    user_id = principal.id
    slugs = []
    for seat in (1, 2, 3):
        created = await booking_service.create_booking(db_session, principal, booking_request([seat]))
        slugs.append(created.slug)

    items, pagination = await booking_service.list_bookings(db_session, user_id, page=1, limit=2)
    assert [r.slug for r in items] == [slugs[2], slugs[1]]
    assert pagination == {
        "current_page": 1,
        "total_pages": 2,
        "total_items": 3,
        "items_per_page": 2,
        "has_next_page": True,
        "has_prev_page": False,
    }

    items, pagination = await booking_service.list_bookings(db_session, user_id, page=2, limit=2)
    assert [r.slug for r in items] == [slugs[0]]
    assert not pagination["has_next_page"]
    assert pagination["has_prev_page"]


@pytest.mark.asyncio
async def test_list_bookings_filters(db_session, principal, other_user, booking_request):
    user_id = principal.id
    stranger = Principal(id=other_user.id)
    mine = await booking_service.create_booking(db_session, principal, booking_request([1]))
    mine_slug = mine.slug
    await booking_service.create_booking(db_session, stranger, booking_request([2]))
    await booking_service.cancel_booking(db_session, mine_slug, principal)

    items, _ = await booking_service.list_bookings(db_session, user_id)
    assert [r.slug for r in items] == [mine_slug]

    items, _ = await booking_service.list_bookings(db_session, user_id, status="pending")
    assert items == []

    items, pagination = await booking_service.list_bookings(db_session)
    assert pagination["total_items"] == 2


# Status changes -------------------------------------------------------------

@pytest.mark.asyncio
async def test_confirm_then_complete_releases_seats(
    db_session, principal, booking_request, test_vehicle, travel_date
):
    vehicle_id = test_vehicle.id
    created = await booking_service.create_booking(db_session, principal, booking_request([3, 4]))
    slug = created.slug

    confirmed = await booking_service.update_status(
        db_session, slug, StatusUpdate(status="confirmed"), principal
    )
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_at is not None
    assert await inventory_service.occupied_seats(db_session, vehicle_id, travel_date) == {3, 4}

    completed = await booking_service.update_status(
        db_session, slug, StatusUpdate(status="completed"), principal
    )
    assert completed.status == "completed"
    assert await inventory_service.occupied_seats(db_session, vehicle_id, travel_date) == set()

    with pytest.raises(InvalidTransition):
        await booking_service.update_status(
            db_session, slug, StatusUpdate(status="confirmed"), principal
        )


@pytest.mark.asyncio
async def test_pending_cannot_jump_to_completed(db_session, principal, booking_request):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    with pytest.raises(InvalidTransition) as exc_info:
        await booking_service.update_status(
            db_session, created.slug, StatusUpdate(status="completed"), principal
        )
    assert exc_info.value.detail["current"] == "pending"


@pytest.mark.asyncio
async def test_payment_fields_update_without_status_change(db_session, principal, booking_request):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    updated = await booking_service.update_status(
        db_session, created.slug, StatusUpdate(payment_status="paid", payment_method="card"), principal
    )
    assert updated.status == "pending"
    assert updated.payment_status == "paid"
    assert updated.payment_method == "card"


@pytest.mark.asyncio
async def test_payment_on_closed_booking_is_admin_only(
    db_session, principal, admin_principal, booking_request
):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    slug = created.slug
    await booking_service.cancel_booking(db_session, slug, principal)

    with pytest.raises(Unauthorized):
        await booking_service.update_status(
            db_session, slug, StatusUpdate(payment_status="refunded"), principal
        )

    refunded = await booking_service.update_status(
        db_session, slug, StatusUpdate(payment_status="refunded"), admin_principal
    )
    assert refunded.status == "cancelled"
    assert refunded.payment_status == "refunded"


@pytest.mark.asyncio
async def test_stranger_cannot_change_status(db_session, principal, other_user, booking_request):
    stranger = Principal(id=other_user.id)
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    with pytest.raises(Unauthorized):
        await booking_service.update_status(
            db_session, created.slug, StatusUpdate(status="confirmed"), stranger
        )


# Cancellation ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_cancellation_frees_seats_for_rebooking(
    db_session, principal, other_user, booking_request, test_vehicle, travel_date
):
    vehicle_id = test_vehicle.id
    stranger = Principal(id=other_user.id)
    created = await booking_service.create_booking(db_session, principal, booking_request([4, 5]))
    slug = created.slug

    cancelled = await booking_service.cancel_booking(db_session, slug, principal, "Plans changed")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Plans changed"
    assert cancelled.cancelled_at is not None
    assert await inventory_service.occupied_seats(db_session, vehicle_id, travel_date) == set()

    rebooked = await booking_service.create_booking(db_session, stranger, booking_request([4, 5]))
    assert rebooked.seat_numbers == [4, 5]
    # The cancelled booking keeps its seat list for history
    history = await booking_service.get_booking(db_session, slug, principal)
    assert history.seat_numbers == [4, 5]


@pytest.mark.asyncio
async def test_cancel_twice(db_session, principal, booking_request):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    slug = created.slug
    await booking_service.cancel_booking(db_session, slug, principal)

    with pytest.raises(AlreadyCancelled):
        await booking_service.cancel_booking(db_session, slug, principal)


@pytest.mark.asyncio
async def test_cannot_cancel_completed(db_session, principal, booking_request):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    slug = created.slug
    await booking_service.update_status(db_session, slug, StatusUpdate(status="confirmed"), principal)
    await booking_service.update_status(db_session, slug, StatusUpdate(status="completed"), principal)

    with pytest.raises(CannotCancelCompleted):
        await booking_service.cancel_booking(db_session, slug, principal)


@pytest.mark.asyncio
async def test_only_owner_cancels(db_session, principal, admin_principal, booking_request):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    with pytest.raises(Unauthorized):
        await booking_service.cancel_booking(db_session, created.slug, admin_principal)


@pytest.mark.asyncio
async def test_cancel_inside_two_hour_window(db_session, principal, booking_request, travel_date):
    created = await booking_service.create_booking(db_session, principal, booking_request([1]))
    slug = created.slug
    departure = departure_time(travel_date)

    with pytest.raises(TooLateToCancel):
        await booking_service.cancel_booking(
            db_session, slug, principal, now=departure - timedelta(hours=1, minutes=59)
        )

    cancelled = await booking_service.cancel_booking(
        db_session, slug, principal, now=departure - timedelta(hours=2, minutes=1)
    )
    assert cancelled.status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_unknown_booking(db_session, principal):
    with pytest.raises(ReservationNotFound):
        await booking_service.cancel_booking(db_session, "BK-nope", principal)


@pytest.mark.asyncio
async def test_stale_status_write_is_rejected(session_factory, principal, booking_request):
    async with session_factory() as session:
        created = await booking_service.create_booking(session, principal, booking_request([1]))
        slug = created.slug

    async with session_factory() as stale, session_factory() as fresh:
        observed = await booking_service._load_by_slug(stale, slug)
        await booking_service.cancel_booking(fresh, slug, principal)

        applied = await booking_service._apply_change(
            stale, observed, {"status": "cancelled", "cancellation_reason": "late duplicate"}
        )
        assert applied is False

        with pytest.raises(AlreadyCancelled):
            await booking_service.cancel_booking(stale, slug, principal)

        stored = await booking_service.get_booking(fresh, slug, principal)
        assert stored.cancellation_reason == "User cancellation"


@pytest.mark.asyncio
async def test_concurrent_cancellations(session_factory, principal, booking_request):
    async with session_factory() as session:
        created = await booking_service.create_booking(session, principal, booking_request([2]))
        slug = created.slug

    async def attempt():
        async with session_factory() as session:
            cancelled = await booking_service.cancel_booking(session, slug, principal)
            return cancelled.status

    results = await asyncio.gather(attempt(), attempt(), attempt(), return_exceptions=True)

    assert results.count("cancelled") == 1
    errors = [r for r in results if r != "cancelled"]
    assert all(isinstance(e, (AlreadyCancelled, StoreUnavailable)) for e in errors)
