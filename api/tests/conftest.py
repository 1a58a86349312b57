"""Shared test fixtures.

The suite runs against a throwaway SQLite file through aiosqlite. The
environment is set before anything from canchaya is imported, because the
settings object and the engine are built at import time.
"""

import os

os.environ["CANCHAYA_DATABASE_URL"] = "sqlite+aiosqlite:///./.pytest_canchaya.db"
os.environ["CANCHAYA_SWEEP_ON_STARTUP"] = "false"
os.environ["CANCHAYA_CHANGE_RELAY_ENABLED"] = "false"

from datetime import date, time  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from canchaya.core.auth import create_access_token  # noqa: E402
from canchaya.core.database import async_session_factory, engine  # noqa: E402
from canchaya.main import app  # noqa: E402
from canchaya.models import Base, Booking, BookingStatus, Court, CourtStatus, Customer  # noqa: E402


@pytest.fixture(autouse=True)
async def _reset_database():
    """Fresh schema for every test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for tests, any existing pooled connections are bound to the old loop
    and will fail with 'Future attached to a different loop'. Disposing before each
    test forces fresh connections in the current loop.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    token = create_access_token("staff-1", email="staff@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def seed_data():
    """Two courts (one in maintenance) and two customers."""
    async with async_session_factory() as session:
        futbol = Court(name="Fútbol 5", court_type="futbol5", hourly_rate_cents=10000)
        padel = Court(
            name="Pádel",
            court_type="padel",
            hourly_rate_cents=5000,
            status=CourtStatus.MAINTENANCE,
        )
        ana = Customer(first_name="Ana", last_name="García", phone="11-4444-1111")
        juan = Customer(first_name="Juan", last_name="Pérez", phone="11-4444-2222")
        session.add_all([futbol, padel, ana, juan])
        await session.commit()
        return {"futbol": futbol, "padel": padel, "ana": ana, "juan": juan}


@pytest.fixture
def make_booking():
    """Insert a booking directly, bypassing the rules."""

    async def _make(
        court: Court,
        customer: Customer,
        booking_date: date,
        start: time,
        end: time,
        status: BookingStatus = BookingStatus.CONFIRMED,
        **extra,
    ) -> Booking:
        async with async_session_factory() as session:
            if "created_at" in extra:
                extra.setdefault("pending_since", extra["created_at"])
            booking = Booking(
                court_id=court.id,
                customer_id=customer.id,
                booking_date=booking_date,
                start_time=start,
                end_time=end,
                status=status,
                cost_cents=extra.pop("cost_cents", 0),
                **extra,
            )
            session.add(booking)
            await session.commit()
            return booking

    return _make


class RecordingRedis:
    """Stands in for a redis.Redis client and keeps what was published."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []

    def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


@pytest.fixture
def recording_redis():
    return RecordingRedis()
