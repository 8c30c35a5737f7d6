"""
Workshop Ledger - Test Configuration

Pytest fixtures and configuration.

Tests run against SQLite in memory unless TEST_DATABASE_URL points at a
PostgreSQL instance.
"""

import os

# Must be set before app.config is imported
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal
from typing import AsyncGenerator

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.database import Base, get_async_session
from app.models.customer import Customer
from app.models.job import Job
from app.services.record_store import VersionedRecordStore
from main import app


TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _create_test_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        return create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = _create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def store(db_session: AsyncSession) -> VersionedRecordStore:
    return VersionedRecordStore(db_session)


@pytest_asyncio.fixture
async def test_customer(store: VersionedRecordStore) -> Customer:
    """Create a test customer."""
    return await store.create_customer(
        {
            "name": "Margaret Hill",
            "phone": "0412 555 101",
            "email": "margaret@example.com",
            "address": "14 Orchard Lane",
        },
        actor="front-desk",
    )


@pytest_asyncio.fixture
async def second_customer(store: VersionedRecordStore) -> Customer:
    return await store.create_customer(
        {
            "name": "Greenway Landscaping",
            "company_name": "Greenway Landscaping Pty Ltd",
            "customer_type": "commercial",
            "phone": "0398 555 202",
            "is_account": True,
        },
        actor="front-desk",
    )


@pytest_asyncio.fixture
async def test_job(store: VersionedRecordStore, test_customer: Customer) -> Job:
    """Create a test job: one part at 2 x $25.00 plus one hour at $89.00."""
    return await store.create_job(
        {
            "customer_id": test_customer.id,
            "machine_category": "Lawn Mower",
            "machine_brand": "Victa",
            "machine_model": "Pace 4",
            "problem_description": "Hard to start, surging at idle",
            "line_items": [
                {
                    "part_id": "SP-1021",
                    "description": "Spark plug",
                    "category": "Ignition",
                    "quantity": Decimal("2"),
                    "unit_price": Decimal("25.00"),
                },
            ],
            "labour_hours": Decimal("1"),
            "labour_rate": Decimal("89.00"),
        },
        actor="front-desk",
    )
