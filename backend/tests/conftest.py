"""
Pytest fixtures for test database, units of work, seeded aggregates, client
and authentication.

Each test gets its own SQLite database file (aiosqlite), so concurrent units
of work inside one test really contend for the same rows. Point
TEST_DATABASE_URL at PostgreSQL to run the suite against the production
dialect instead.
"""

import os
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_engine import models  # noqa: F401 - register mappers on Base.metadata
from rental_engine.api.deps import get_presence_registry, get_uow
from rental_engine.core.clock import utcnow
from rental_engine.core.security import create_access_token
from rental_engine.db.base import Base
from rental_engine.db.session import build_engine, build_session_factory
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.main import app
from rental_engine.models.driver import Driver
from rental_engine.models.enums import DriverStatus, DriverType, LoyaltyTier, VehicleStatus
from rental_engine.models.user import User
from rental_engine.models.vehicle import Vehicle
from rental_engine.services import booking_service, payment_service
from rental_engine.services.interfaces import Broadcaster, NotificationSink
from rental_engine.services.outbox import Outbox
from rental_engine.services.presence_service import InMemoryPresenceRegistry


class RecordingSink(NotificationSink):
    """Notification sink that remembers what was sent."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, kind: str, recipient: str, payload: dict) -> None:
        self.sent.append((kind, recipient, payload))

    def kinds(self, recipient: str = None) -> list[str]:
        return [kind for kind, to, _ in self.sent if recipient is None or to == recipient]


class RecordingBroadcaster(Broadcaster):
    def __init__(self):
        self.published: list[tuple[str, str, dict]] = []

    async def publish(self, topic: str, event: str, payload: dict) -> None:
        self.published.append((topic, event, payload))

    def events_for(self, topic: str) -> list[str]:
        return [event for to, event, _ in self.published if to == topic]


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Create tables in a fresh database, drop them afterwards."""
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'rental_test.db'}"
    test_engine = build_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest_asyncio.fixture
async def uow(session_factory, sink, broadcaster) -> UnitOfWork:
    """Unit of work with an inline (not started) outbox: side effects land right after commit."""
    return UnitOfWork(session_factory, Outbox(sink, broadcaster), max_attempts=5)


@pytest_asyncio.fixture
async def presence() -> InMemoryPresenceRegistry:
    return InMemoryPresenceRegistry(ttl_seconds=120)


async def _persist(session_factory, *objects):
    async with session_factory() as session:
        session.add_all(objects)
        await session.commit()
    return objects[0] if len(objects) == 1 else objects


@pytest_asyncio.fixture
async def renter(session_factory) -> User:
    return await _persist(session_factory, User(email="renter@example.com", full_name="Rita Renter"))


@pytest_asyncio.fixture
async def fleet_owner(session_factory) -> User:
    return await _persist(session_factory, User(email="fleet@example.com", full_name="Fleet Ops"))


@pytest_asyncio.fixture
async def vehicle(session_factory) -> Vehicle:
    """100/day, odometer at 1000, full 60-unit tank."""
    return await _persist(
        session_factory,
        Vehicle(
            make="Toyota",
            model="Corolla",
            year=2022,
            license_plate="TEST-001",
            price_per_day=Decimal("100.00"),
            status=VehicleStatus.AVAILABLE,
            current_odometer=1000,
            current_fuel_level=100,
            fuel_tank_capacity=Decimal("60"),
        ),
    )


@pytest_asyncio.fixture
async def verified_driver(session_factory, renter) -> Driver:
    """The renter's own driver record with both documents verified."""
    return await _persist(
        session_factory,
        Driver(
            user_id=renter.id,
            name="Rita Renter",
            driver_type=DriverType.RENTAL,
            is_default=True,
            license_file_url="https://files.example.com/license.pdf",
            license_verified=True,
            insurance_file_url="https://files.example.com/insurance.pdf",
            insurance_verified=True,
            verified=True,
            status=DriverStatus.VERIFIED,
        ),
    )


@pytest_asyncio.fixture
async def pro_drivers(session_factory, fleet_owner) -> list[Driver]:
    """Five verified professional drivers."""
    drivers = [
        Driver(
            user_id=fleet_owner.id,
            name=f"Pro Driver {i}",
            driver_type=DriverType.PROFESSIONAL,
            license_verified=True,
            insurance_verified=True,
            verified=True,
            status=DriverStatus.VERIFIED,
        )
        for i in range(5)
    ]
    return list(await _persist(session_factory, *drivers))


@pytest_asyncio.fixture
async def online_pro_drivers(presence, pro_drivers) -> list[Driver]:
    for driver in pro_drivers:
        await presence.mark_online(driver.id)
    return pro_drivers


@pytest_asyncio.fixture
async def open_request(uow, renter, vehicle, presence, online_pro_drivers):
    """A booking waiting for a professional driver, offered to every online pro."""
    pickup = utcnow() + timedelta(days=2)
    return await booking_service.create_booking(
        uow,
        user_id=renter.id,
        vehicle_id=vehicle.id,
        pickup_date=pickup,
        return_date=pickup + timedelta(days=3),
        pickup_location="Airport Terminal 1",
        request_driver=True,
        presence=presence,
    )


@pytest_asyncio.fixture
async def confirmed_booking(uow, renter, vehicle, verified_driver):
    """Paid booking whose pickup time has already arrived: 3 days at 100/day."""
    pickup = utcnow() - timedelta(hours=1)
    booking = await booking_service.create_booking(
        uow,
        user_id=renter.id,
        vehicle_id=vehicle.id,
        pickup_date=pickup,
        return_date=pickup + timedelta(days=3),
        pickup_location="Downtown Depot",
        driver_id=verified_driver.id,
    )
    await booking_service.attach_payment_session(uow, booking.id, f"cs_test_{booking.id}")
    booking, _ = await payment_service.complete_payment(uow, f"cs_test_{booking.id}")
    return booking


@pytest_asyncio.fixture
async def loyal_renter(session_factory) -> User:
    """Renter one rental short of silver."""
    return await _persist(
        session_factory,
        User(email="loyal@example.com", total_rentals=4, loyalty_points=40, loyalty_tier=LoyaltyTier.BRONZE),
    )


@pytest_asyncio.fixture
async def auth_headers(renter: User) -> dict:
    """Authorization headers with a Bearer token for the renter."""
    return {"Authorization": f"Bearer {create_access_token(data={'sub': renter.id})}"}


@pytest_asyncio.fixture
async def fleet_headers(fleet_owner: User) -> dict:
    """Bearer token for the account that owns the professional drivers."""
    return {"Authorization": f"Bearer {create_access_token(data={'sub': fleet_owner.id})}"}


@pytest_asyncio.fixture(scope="function")
async def client(uow, presence) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test unit of work and presence registry."""
    app.dependency_overrides[get_uow] = lambda: uow
    app.dependency_overrides[get_presence_registry] = lambda: presence

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
