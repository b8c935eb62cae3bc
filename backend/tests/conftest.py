"""
Pytest fixtures for test database, client, notifier and domain factories.

Each test gets a fresh SQLite file (or TEST_DATABASE_URL, e.g. a PostgreSQL
test database) with all tables created, so tests never share state.
Services commit their own unit of work, so a rollback-per-test wrapper
would not isolate anything.

Factories return detached objects: a later rollback inside a service must
not expire what the test holds on to.
"""

import os

# Must be set before racestay reads its settings
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "log")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./race_stay_unused.db")

from datetime import date, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from racestay.main import app
from racestay.db.base import Base, utcnow
from racestay.db.session import build_engine, build_session_factory, get_db
from racestay.models.booking import Booking, PENDING
from racestay.models.points_transaction import TransactionType
from racestay.models.property import Property
from racestay.models.race import Race
from racestay.models.user import User
from racestay.services import points_ledger
from racestay.services.interfaces.notifier import Notifier, NotificationEvent
from racestay.services.notifier_factory import set_notifier
from racestay.services.scheduled_jobs import default_jobs
from racestay.services.scheduler import BackgroundScheduler

ADMIN_TOKEN = os.environ["ADMIN_API_TOKEN"]


class RecordingNotifier(Notifier):
    """Keeps every dispatched event; raises instead when `fail` is set."""

    def __init__(self):
        self.events: list[NotificationEvent] = []
        self.fail = False

    async def send(self, events: list[NotificationEvent]) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.events.extend(events)

    def kinds(self, user_id: int | None = None) -> list[str]:
        return [e.kind for e in self.events if user_id is None or e.user_id == user_id]


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'race_stay_test.db'}"
    test_engine = build_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def notifier() -> RecordingNotifier:
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


@pytest.fixture
def scheduler(session_factory) -> BackgroundScheduler:
    return BackgroundScheduler(session_factory, default_jobs(), tick_seconds=1)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, scheduler) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB dependency bound to the per-test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    # ASGITransport does not run the lifespan hook
    app.state.scheduler = scheduler

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.scheduler = None


@pytest.fixture
def auth_headers():
    def headers(user) -> dict:
        user_id = user if isinstance(user, int) else user.id
        return {"X-User-Id": str(user_id)}
    return headers


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def today() -> date:
    return utcnow().date()


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Create a user; starting points go through the ledger so balances match history."""
    counter = {"n": 0}

    async def factory(points: int = 0, email: str | None = None, is_active: bool = True) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"runner{counter['n']}@example.com",
            first_name="Runner",
            last_name=str(counter["n"]),
            points_balance=0,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()
        if points:
            await points_ledger.credit(
                db_session, user.id, points, TransactionType.SUBSCRIPTION_BONUS, "Starting balance"
            )
        await db_session.commit()
        db_session.expunge(user)
        return user

    return factory


@pytest.fixture
def make_race(db_session: AsyncSession, today: date):
    """Create a host's property and a race hosted there."""

    async def factory(
        host: User,
        province: str | None = "Zaragoza",
        max_guests: int = 2,
        cancellation_policy: str = "moderate",
        race_date: date | None = None,
    ) -> Race:
        prop = Property(
            owner_id=host.id,
            title=f"Flat near the start line ({province})",
            locality="Centro",
            province=province,
            max_guests=max_guests,
            cancellation_policy=cancellation_policy,
        )
        db_session.add(prop)
        await db_session.flush()
        race = Race(
            host_id=host.id,
            property_id=prop.id,
            name="Maratón de prueba",
            race_date=race_date or today + timedelta(days=60),
            province=province,
        )
        db_session.add(race)
        await db_session.commit()
        db_session.expunge_all()
        return race

    return factory


@pytest.fixture
def make_booking(db_session: AsyncSession):
    """Insert a booking row directly, bypassing request validation."""

    async def factory(
        race: Race,
        guest: User,
        check_in: date,
        check_out: date,
        status: str = PENDING,
        points_cost: int = 60,
    ) -> Booking:
        booking = Booking(
            race_id=race.id,
            property_id=race.property_id,
            host_id=race.host_id,
            guest_id=guest.id,
            check_in=check_in,
            check_out=check_out,
            points_cost=points_cost,
            status=status,
            host_response_deadline=utcnow() + timedelta(hours=48),
        )
        db_session.add(booking)
        await db_session.commit()
        db_session.expunge(booking)
        return booking

    return factory
