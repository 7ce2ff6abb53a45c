"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import market_signals.ingestion.models  # noqa: F401
from market_signals.config import DatabaseSettings, Settings
from market_signals.storage.database import DatabaseManager
from market_signals.storage.models import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def org_id() -> str:
    """Sample org id for testing."""
    return "org_test"


@pytest.fixture
async def async_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def db_manager(async_engine) -> DatabaseManager:
    return DatabaseManager.from_engine(async_engine)


@pytest.fixture
def settings() -> Settings:
    """Default settings pointed at the in-memory database."""
    return Settings(database=DatabaseSettings(DATABASE_URL=TEST_DATABASE_URL))
