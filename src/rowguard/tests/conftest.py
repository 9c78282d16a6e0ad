"""
Core pytest configuration for the test suite.

Every test gets its own SQLite database file (under pytest's tmp_path), so
tests can commit freely and rollbacks done by the library (e.g. after an
integrity error) behave exactly as they would against a real database.

Domain fixtures (repositories, sample rows) live in tests/test_fixtures/ and are
imported at the bottom of this module so they are available everywhere.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

# -------------------------------
# Early logging tuning
# -------------------------------
# Keep noisy third-party loggers quiet before anything imports them.
NOISY_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "aiosqlite",
    "asyncio",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from rowguard.config.settings import Settings
from rowguard.core.logging.builder import setup_logging
from rowguard.database.base import Base
from rowguard.database.session import build_engine, build_sessionmaker
from rowguard.models import item, stock  # noqa: F401 – import to register models with Base.metadata


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """
    Install the library's dictConfig logging once for the whole session.

    Text format on stdout keeps failures readable; caplog keeps working because
    dictConfig is applied with disable_existing_loggers=False and pytest installs
    its capture handler per test.
    """
    setup_logging(Settings(ENV="testing", LOG_FORMAT="text", LOG_LEVEL="DEBUG", LOG_TO_STDOUT=True))
    yield


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        ENV="testing",
        TESTING=True,
        TEST_DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'rowguard_test.db'}",
        LOG_TO_STDOUT=True,
    )


@pytest.fixture
async def async_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(test_settings)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """
    A plain session on the per-test database. Tests commit whatever they want
    visible to other sessions.
    """
    maker = build_sessionmaker(async_engine)
    async with maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def other_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session on the same database (a concurrent writer)."""
    maker = build_sessionmaker(async_engine)
    async with maker() as session:
        yield session
        await session.rollback()


# Repository test fixtures
from rowguard.tests.test_fixtures.repository_fixtures import (  # noqa: E402
    item_repository,
    stock_repository,
    sample_item_data,
    create_item,
    created_item,
    multiple_items,
    created_stock,
)
