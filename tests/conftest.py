"""Shared fixtures for the SLA engine tests."""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from infrastructure.database import Base
from sla.domain import SLAConfig
from tests.factories import NOW


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sla_config() -> SLAConfig:
    return SLAConfig()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with all SLA tables created."""
    import sla.infrastructure.models  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
