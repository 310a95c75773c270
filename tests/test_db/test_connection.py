from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from trust_safety.db import connection


def test_engine_uses_configured_url() -> None:
    connection.get_engine.cache_clear()
    connection.get_sessionmaker.cache_clear()
    engine = connection.get_engine()
    assert str(engine.url).startswith("postgresql+asyncpg://")
    assert engine.pool.size() == 5  # type: ignore[attr-defined]
    connection.get_engine.cache_clear()
    connection.get_sessionmaker.cache_clear()


@pytest.mark.asyncio
async def test_get_db_yields_session(test_database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = connection.build_engine(test_database_url)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(connection, "get_sessionmaker", lambda: maker)

    generator = connection.get_db()
    session = await anext(generator)
    result = await session.execute(text("SELECT 1"))
    assert result.scalar() == 1
    await generator.aclose()
    await engine.dispose()


@pytest.mark.asyncio
async def test_check_db_health_true(test_database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = connection.build_engine(test_database_url)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(connection, "get_sessionmaker", lambda: maker)

    assert await connection.check_db_health() is True
    await engine.dispose()


@pytest.mark.asyncio
async def test_check_db_health_false(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken() -> None:
        raise RuntimeError("no engine")

    monkeypatch.setattr(connection, "get_sessionmaker", broken)
    assert await connection.check_db_health() is False
