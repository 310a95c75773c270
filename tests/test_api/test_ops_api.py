from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from trust_safety.ops import events as ops_events
from trust_safety.security.web_auth import create_admin_token


def _auth_headers(profile_id: str = "admin-1", **extra: str) -> dict[str, str]:
    token = create_admin_token(profile_id=profile_id)
    return {"Authorization": f"Bearer {token}", **extra}


@pytest.fixture(autouse=True)
def _clean_buffer() -> Iterator[None]:
    ops_events.ops_event_buffer.clear()
    yield
    ops_events.ops_event_buffer.clear()


def test_events_require_admin(client: TestClient) -> None:
    assert client.get("/ops/events").status_code == 401


def test_events_are_sanitized_and_filterable(client: TestClient) -> None:
    logger = logging.getLogger("trust_safety.tests")
    logger.warning(
        "Blocked comment from 203.0.113.5",
        extra={"event_type": "guard.blocked", "ops_payload": {"ip_address": "203.0.113.5", "device_id": "d"}},
    )
    logger.info("Sweep done", extra={"event_type": "scheduler.sweep.completed", "ops_payload": {}})

    response = client.get("/ops/events?type=guard.", headers=_auth_headers())

    assert response.status_code == 200
    events = response.json()
    assert len(events) == 1
    assert events[0]["message"] == "Blocked comment from 203.0.113.x"
    assert events[0]["payload"] == {"ip_address": "203.0.113.0/24", "device_id": "[REDACTED]"}


def test_summary_reports_degraded_checks(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _ok() -> bool:
        return True

    monkeypatch.setattr("trust_safety.api.routes.ops.check_db_health", _ok)
    logging.getLogger("trust_safety.tests").warning(
        "Rate limit store unavailable", extra={"event_type": "rate_limit.fail_open", "ops_payload": {}}
    )

    response = client.get("/ops/summary", headers=_auth_headers())

    assert response.status_code == 200
    body = response.json()
    services = {service["name"]: service for service in body["services"]}
    assert services["database"]["status"] == "ok"
    assert services["risk_checks"]["status"] == "degraded"
    assert body["events_by_type"]["rate_limit.fail_open"] == 1
