from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from trust_safety.ops.events import (
    REDACTED,
    OpsEventBuffer,
    OpsEventHandler,
    mask_ip,
    ops_event_buffer,
    redact_text,
    reset_correlation_id,
    sanitize_value,
    set_correlation_id,
)


def _event(event_type: str, level: str = "info", correlation_id: str | None = None) -> dict[str, object]:
    return {
        "timestamp": "2026-03-01T12:00:00.000Z",
        "level": level,
        "component": "tests",
        "event_type": event_type,
        "message": event_type,
        "correlation_id": correlation_id,
        "payload": {},
    }


def test_mask_ip_truncates_to_network() -> None:
    assert mask_ip("203.0.113.57") == "203.0.113.0/24"
    assert mask_ip("2001:db8:abcd:12::1") == "2001:db8:abcd::/48"
    assert mask_ip("not-an-ip") == REDACTED


def test_redact_text_hides_emails_and_host_octet() -> None:
    text = "ban for mod@example.com from 198.51.100.23"
    assert redact_text(text) == f"ban for {REDACTED} from 198.51.100.x"


def test_sanitize_value_walks_nested_payloads() -> None:
    payload = {
        "ip_address": "203.0.113.57",
        "device_id": "fp-123",
        "nested": {"authorization": "Bearer abc", "count": 3},
        "reasons": ["spam from 192.0.2.4"],
    }

    assert sanitize_value(payload) == {
        "ip_address": "203.0.113.0/24",
        "device_id": REDACTED,
        "nested": {"authorization": REDACTED, "count": 3},
        "reasons": ["spam from 192.0.2.x"],
    }


def test_buffer_is_bounded_and_newest_first() -> None:
    buffer = OpsEventBuffer(max_size=2)
    for name in ("a", "b", "c"):
        buffer.add(_event(name))  # type: ignore[arg-type]

    assert [item["event_type"] for item in buffer.recent(limit=10)] == ["c", "b"]
    buffer.resize(5)
    assert len(buffer.recent(limit=10)) == 2


def test_buffer_filters_and_summary() -> None:
    buffer = OpsEventBuffer()
    buffer.add(_event("guard.blocked", "info", "req-1"))  # type: ignore[arg-type]
    buffer.add(_event("guard.blocked", "warning"))  # type: ignore[arg-type]
    buffer.add(_event("rate_limit.fail_open", "warning"))  # type: ignore[arg-type]

    assert len(buffer.recent(limit=10, event_type="guard.")) == 2
    assert len(buffer.recent(limit=10, level="warning")) == 2
    assert len(buffer.recent(limit=10, correlation_id="req-1")) == 1
    assert buffer.summary() == {
        "by_type": {"guard.blocked": 2, "rate_limit.fail_open": 1},
        "by_level": {"info": 1, "warning": 2},
    }


@pytest.fixture
def ops_logger() -> Iterator[logging.Logger]:
    ops_event_buffer.clear()
    logger = logging.getLogger("tests.ops")
    handler = OpsEventHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    yield logger
    logger.removeHandler(handler)
    logger.propagate = True
    ops_event_buffer.clear()


def test_handler_only_buffers_typed_records(ops_logger: logging.Logger) -> None:
    token = set_correlation_id("req-9")
    try:
        ops_logger.info("plain message")
        ops_logger.warning(
            "Blocked 203.0.113.5",
            extra={"event_type": "guard.blocked", "ops_payload": {"ip_address": "203.0.113.5"}},
        )
    finally:
        reset_correlation_id(token)

    events = ops_event_buffer.recent(limit=10)
    assert len(events) == 1
    assert events[0]["level"] == "warning"
    assert events[0]["message"] == "Blocked 203.0.113.x"
    assert events[0]["payload"] == {"ip_address": "203.0.113.0/24"}
    assert events[0]["correlation_id"] == "req-9"
