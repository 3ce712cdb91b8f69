"""
Pytest configuration and fixtures for testing
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from crud.subscription import InMemorySubscriptionStore, StoreUnavailableError, SubscriptionStore
from crud.usage import InMemoryUsageStore, UsageStore
from database import Base
from services.entitlement_service import EntitlementService
from services.payment_gateway import PaymentGateway
from services.plan_catalog import PlanCatalog
from services.subscription_events import SubscriptionEventBus
from services.usage_service import UsageCounter

# In-memory SQLite database shared across connections for the test run
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START_TIME = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable clock; call it to get "now", advance it to time travel."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)


class UnavailableSubscriptionStore(SubscriptionStore):
    """Simulates a database that cannot be reached."""

    def __init__(self):
        self.write_attempts = 0

    async def get(self, user_id):
        raise StoreUnavailableError("connection refused")

    async def insert_if_absent(self, record):
        self.write_attempts += 1
        return False

    async def upsert(self, record):
        self.write_attempts += 1
        return False

    async def update_status(self, user_id, status, extra=None, expected_status=None):
        self.write_attempts += 1
        return False


class UnavailableUsageStore(UsageStore):
    async def get_count(self, user_id, period):
        raise StoreUnavailableError("connection refused")

    async def increment(self, user_id, period):
        raise StoreUnavailableError("connection refused")


@pytest.fixture
async def session_factory():
    """
    Fixture that provides an isolated, in-memory SQLite database for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a session factory bound to the database
    - Drops all tables and disposes the engine afterwards
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def catalog():
    return PlanCatalog()


@pytest.fixture
def memory_store():
    return InMemorySubscriptionStore()


@pytest.fixture
def unavailable_store():
    return UnavailableSubscriptionStore()


@pytest.fixture
def usage_counter(clock):
    return UsageCounter(InMemoryUsageStore(), clock=clock)


@pytest.fixture
def event_bus():
    return SubscriptionEventBus()


@pytest.fixture
def demo_gateway():
    """Gateway without credentials and without the simulated delay."""
    return PaymentGateway(secret_key=None, demo_delay_seconds=0)


@pytest.fixture
def make_service(demo_gateway, event_bus, usage_counter, catalog, clock):
    """Factory for an EntitlementService over a chosen store."""
    def _make(store, gateway=None, usage=None):
        return EntitlementService(
            store=store,
            gateway=gateway or demo_gateway,
            events=event_bus,
            usage=usage or usage_counter,
            catalog=catalog,
            clock=clock,
        )
    return _make


@pytest.fixture
def service(make_service, memory_store):
    return make_service(memory_store)


@pytest.fixture
def unavailable_usage_counter(clock):
    return UsageCounter(UnavailableUsageStore(), clock=clock)
