from __future__ import annotations

import os
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from trust_safety import models  # noqa: F401
from trust_safety.db import activity_log, history, rate_limit, reputation_log  # noqa: F401
from trust_safety.db.connection import Base, build_engine

ADMIN_IDS = ("admin-1", "admin-2")


@pytest.fixture(autouse=True)
def _default_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://trust:pw@localhost:5432/trust_safety")
    monkeypatch.setenv("ADMIN_TOKEN_SECRET", "test-admin-secret")
    monkeypatch.setenv("ADMIN_PROFILE_IDS", ",".join(ADMIN_IDS))
    from trust_safety.config import get_settings

    get_settings.cache_clear()


def requires_test_db() -> bool:
    test_database_url = os.getenv("TEST_DATABASE_URL")
    return bool(test_database_url and test_database_url.startswith("postgresql+asyncpg://"))


@pytest.fixture
def test_database_url(tmp_path: Path) -> str:
    if requires_test_db():
        return os.environ["TEST_DATABASE_URL"]
    if os.getenv("CI_PARITY") == "1":
        pytest.fail("CI parity mode requires TEST_DATABASE_URL to be set to a Postgres asyncpg URL")
    return f"sqlite+aiosqlite:///{tmp_path / 'trust_safety.db'}"


@pytest.fixture
async def db_engine(test_database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(test_database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session
        await session.rollback()
