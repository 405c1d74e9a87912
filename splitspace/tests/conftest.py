"""
Centralized Test Configuration.
"""

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from splitspace.app.main import app
from splitspace.app.db.session import get_db, Base
from splitspace.app.core.config import settings
from splitspace.app.core.jwt import create_access_token
from splitspace.app.core.reliability import event_stream_breaker
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.enums import UserRole, VerificationTier
from splitspace.app.services.limits import LimitChecker
from splitspace.app.services.pin_gate import PinGate
import splitspace.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PIN = "1234"


# Event handler to enable foreign keys for SQLite
@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.streams = {}
        self.failing = False
        self._closed = False

    def _check(self):
        if self.failing:
            raise RedisConnectionError("Redis unavailable")

    async def ping(self):
        if self.failing or self._closed:
            return False
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        return True

    async def delete(self, key):
        self._check()
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        self._check()
        stream = self.streams.setdefault(name, [])
        entry_id = f"{len(stream) + 1}-0"
        stream.append((entry_id, dict(fields)))
        return entry_id

    async def flushdb(self):
        self.store = {}
        self.streams = {}
        self.failing = False

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def mock_redis():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(mock_redis):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    # Patch the global redis client used by the event publisher and cache
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(mock_redis, monkeypatch):
    """Create tables before each test function and drop after."""
    # Keep PIN hashing cheap in tests
    monkeypatch.setattr(settings, "pin_kdf_iterations", 1000)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await mock_redis.flushdb()
    event_stream_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """For tests that need independent sessions (concurrent callers)."""
    return TestingSessionLocal


@pytest.fixture
async def low_limits(db_session):
    """Small floor so tests can move small amounts; generous ceilings."""
    for tier in VerificationTier:
        await LimitChecker.upsert_limits(
            db_session,
            tier,
            daily_limit=Decimal("1000000.00"),
            per_transaction_limit=Decimal("500000.00"),
            min_transaction=Decimal("1.00"),
        )


@pytest.fixture
def make_account(db_session, low_limits):
    """
    Factory: provision a user + wallet, optionally funded and with a PIN.

    Usage:
        await make_account(1, balance="500.00")
    """
    async def _make(user_id, balance=None, pin=TEST_PIN, role=UserRole.USER, username=None):
        result = await AccountService.create_account(db_session, user_id, username or f"user{user_id}", role)
        if balance:
            await AccountService.topup(db_session, user_id, Decimal(str(balance)), reference=f"seed-{uuid.uuid4().hex}")
        if pin:
            await PinGate.set_pin(db_session, user_id, pin)
        return result

    return _make


@pytest.fixture
def make_token():
    """Factory: bearer headers as the external auth provider would issue them."""
    def _make(user_id, role=UserRole.USER, username=None):
        token = create_access_token(data={
            "sub": username or f"user{user_id}",
            "user_id": user_id,
            "role": role.value,
        })
        return {"Authorization": f"Bearer {token}"}

    return _make
