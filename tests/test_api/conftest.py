from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from trust_safety.db.connection import get_db


@pytest.fixture
def app() -> Iterator[FastAPI]:
    from trust_safety.api.main import app as fastapi_app

    session = AsyncMock()

    async def _db_override():  # type: ignore[no-untyped-def]
        yield session

    fastapi_app.dependency_overrides[get_db] = _db_override
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
