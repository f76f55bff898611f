"""
Pytest configuration and shared fixtures for the VIN registry test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests, file-backed SQLite for
  concurrency tests where every task needs its own connection)
- A static decode oracle with a few known vehicles
- Service and HTTP client fixtures
- Common test doubles
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.db import Base, create_schema, get_db
from core.logging import setup_logging
from vin.normalizer import normalize
from vin.oracle import StaticDecodeOracle
from vin.types import DecodeResult, DecodeSource, YearRange


@pytest.fixture(autouse=True)
def service_logging():
    """Every test runs with the JSON logging the service configures at startup."""
    setup_logging()


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Check digit is '2'; the '5' fails the checksum but the VIN is still accepted
SCENARIO_VIN = "1FTFW1ET5BFC10312"
HONDA_VIN = "1HGCM82633A004352"
FORD_VALID_VIN = "1FTFW1ET2BFC10312"

KNOWN_VEHICLES = {
    SCENARIO_VIN: {"year": 2011, "make": "Ford", "model": "F-150", "trim": "XLT SuperCrew", "body_class": "Pickup"},
    FORD_VALID_VIN: {"year": 2011, "make": "Ford", "model": "F-150", "trim": "XLT SuperCrew", "body_class": "Pickup"},
    HONDA_VIN: {"year": 2003, "make": "Honda", "model": "Accord", "trim": "EX-V6", "body_class": "Coupe"},
}


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    await create_schema(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(async_engine):
    """Session factory on the in-memory engine, for tests that need several sessions."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """
    Session factory on a file-backed SQLite database.

    Each session gets its own connection, so concurrent tasks really race on
    the database constraints instead of sharing one connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}",
        connect_args={"timeout": 30},
        pool_size=10,
        max_overflow=60,
        echo=False,
    )
    await create_schema(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def static_oracle() -> StaticDecodeOracle:
    return StaticDecodeOracle(KNOWN_VEHICLES)


@pytest.fixture
def registration_service(async_db_session, static_oracle):
    from services.registration_service import RegistrationService
    return RegistrationService(db=async_db_session, oracle=static_oracle)


@pytest_asyncio.fixture
async def api_client(async_db_session, static_oracle) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client on the real app with the database and oracle swapped for test doubles."""
    from main import app
    from middleware.rate_limit import limiter

    async def override_get_db():
        yield async_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.oracle = static_oracle
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.oracle = None


# Test Data Factories
def make_decode(
    source: DecodeSource = DecodeSource.ORACLE,
    confidence: int = 100,
    **fields,
) -> DecodeResult:
    """DecodeResult with sensible defaults for registry tests."""
    return DecodeResult(source=source, confidence=confidence, **fields)


def fallback_decode(make: str = "Ford", confidence: int = 20) -> DecodeResult:
    return DecodeResult(
        source=DecodeSource.FALLBACK,
        confidence=confidence,
        make=make,
        year_range=YearRange(1981, 2011),
    )


@pytest.fixture
def scenario_vin():
    return normalize(SCENARIO_VIN)


# Common Test Doubles
@pytest.fixture
def mock_async_session():
    """Provide a reusable AsyncSession-like test double.

    - `add` is a `MagicMock` (synchronous)
    - `flush`, `commit`, `rollback`, `refresh`, `execute` are `AsyncMock`
    Tests can override `execute.side_effect` / `flush.side_effect` as needed.
    """
    session = AsyncMock()

    # `add` is synchronous on SQLAlchemy session
    session.add = MagicMock()

    # Async methods
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.execute = AsyncMock()

    return session
