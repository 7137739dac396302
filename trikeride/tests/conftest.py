"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from trikeride.app.main import app
from trikeride.app.core.jwt import issue_token
from trikeride.app.core.redis_client import get_redis
from trikeride.app.db.session import get_db, Base
import trikeride.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


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
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttl = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        if ex is not None:
            self.ttl[key] = ex
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def sadd(self, key, *members):
        if self._closed:
            raise ConnectionError("Redis closed")
        current = self.store.setdefault(key, set())
        added = len(set(members) - current)
        current.update(members)
        return added

    async def smembers(self, key):
        if self._closed:
            raise ConnectionError("Redis closed")
        return set(self.store.get(key, set()))

    async def expire(self, key, seconds):
        if key not in self.store:
            return False
        self.ttl[key] = seconds
        return True

    async def flushdb(self):
        self.store = {}
        self.ttl = {}
        self._closed = False

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


def auth_headers(user_id: int, role: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id, role)}"}


@pytest.fixture
def passenger_headers():
    return auth_headers(100, "PASSENGER")


@pytest.fixture
def driver_headers():
    return auth_headers(1, "DRIVER")


@pytest.fixture
def other_driver_headers():
    return auth_headers(2, "DRIVER")


# Scenario coordinates around Manila
DRIVER_START = {"lat": 14.50, "lon": 121.00}
PICKUP = {"latitude": 14.505, "longitude": 121.005, "address": "Pickup corner"}
DESTINATION = {"latitude": 14.520, "longitude": 121.020, "address": "Market"}


@pytest.fixture
def create_booking(client):
    """Post a booking as a passenger and return its JSON body."""
    async def _create(headers, preferred_fare="50.00", pickup=None, destination=None):
        response = await client.post(
            "/v1/bookings",
            json={
                "pickup": pickup or PICKUP,
                "destination": destination or DESTINATION,
                "preferred_fare": preferred_fare,
            },
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["booking"]

    return _create


@pytest.fixture
def headers_for():
    return auth_headers
