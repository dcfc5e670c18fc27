"""
Pytest fixtures for test database, client, fleet data and authentication.

Each test gets a fresh schema. By default that lives in a throwaway SQLite
file; point TEST_DATABASE_URL at a PostgreSQL database (asyncpg driver) to
run the same suite against the production engine.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.core.security import Principal, create_access_token
from app.models.user import User
from app.models.route import Route
from app.models.vehicle import Vehicle
from app.services import notification_service
from app.schemas.reservation import ReservationCreate


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}"
    test_engine = create_async_engine(url, echo=False)
    if test_engine.dialect.name == "sqlite":
        event.listen(test_engine.sync_engine, "connect", _enable_foreign_keys)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await notification_service.drain()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        try:
            yield db_session
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, username: str, role: str = "user") -> User:
    user = User(email=f"{username}@example.com", username=username, role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "traveller")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "someone_else")


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "ops_admin", role="admin")


@pytest_asyncio.fixture
async def driver_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "driver_one", role="driver")


def _headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    return _headers(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return _headers(other_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return _headers(admin_user)


@pytest.fixture
def driver_headers(driver_user: User) -> dict:
    return _headers(driver_user)


@pytest.fixture
def principal(test_user: User) -> Principal:
    return Principal(id=test_user.id, role="user")


@pytest.fixture
def admin_principal(admin_user: User) -> Principal:
    return Principal(id=admin_user.id, role="admin")


@pytest_asyncio.fixture
async def test_route(db_session: AsyncSession) -> Route:
    route = Route(
        route_code="KTM-PKR",
        route_name="Kathmandu - Pokhara",
        origin="Kathmandu",
        destination="Pokhara",
        fare=Decimal("500.00"),
    )
    db_session.add(route)
    await db_session.commit()
    await db_session.refresh(route)
    return route


async def _make_vehicle(db: AsyncSession, route: Route, number: str, **overrides) -> Vehicle:
    vehicle = Vehicle(
        vehicle_number=number,
        vehicle_type=overrides.pop("vehicle_type", "standard"),
        capacity=overrides.pop("capacity", 20),
        route_id=route.id,
        **overrides,
    )
    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)
    return vehicle


@pytest_asyncio.fixture
async def test_vehicle(db_session: AsyncSession, test_route: Route) -> Vehicle:
    """A sellable 20-seat bus on the 500.00 fare route."""
    return await _make_vehicle(db_session, test_route, "BA-1-KHA-1001")


@pytest_asyncio.fixture
async def maintenance_vehicle(db_session: AsyncSession, test_route: Route) -> Vehicle:
    return await _make_vehicle(db_session, test_route, "BA-1-KHA-2002", status="maintenance")


@pytest.fixture
def today() -> date:
    return datetime.now(timezone.utc).date()


@pytest.fixture
def travel_date(today: date) -> date:
    return today + timedelta(days=30)


@pytest.fixture
def booking_payload(test_vehicle: Vehicle, travel_date: date):
    """Factory for JSON booking bodies: booking_payload([4, 5])."""
    # Read now: a rollback later in the test expires the fixture objects
    vehicle_id = test_vehicle.id

    def build(seats, passengers=None, **overrides) -> dict:
        payload = {
            "vehicle_id": vehicle_id,
            "seat_numbers": list(seats),
            "travel_date": travel_date.isoformat(),
            "contact_phone": "9800000000",
            "contact_email": "traveller@example.com",
            "passenger_names": passengers if passengers is not None
            else [f"Passenger {n}" for n in seats],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def booking_request(booking_payload):
    """Factory for validated ReservationCreate objects, for service-level tests."""

    def build(seats, passengers=None, **overrides) -> ReservationCreate:
        return ReservationCreate(**booking_payload(seats, passengers, **overrides))

    return build
