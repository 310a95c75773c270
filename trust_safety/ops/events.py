"""In-process ops event feed.

Log records that carry an ``event_type`` are copied into a bounded buffer
that admins read through ``GET /ops/events``. Payloads are sanitized on the
way in: credentials and device fingerprints are dropped and client IPs are
truncated to their network prefix.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from collections import Counter, deque
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Literal, TypedDict
from uuid import uuid4

EventLevel = Literal["info", "warning", "error"]

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
IPV4_RE = re.compile(r"\b(\d{1,3}\.\d{1,3}\.\d{1,3})\.\d{1,3}\b")
SENSITIVE_KEYWORDS = {
    "token",
    "password",
    "secret",
    "authorization",
    "device_id",
    "user_agent",
    "email",
}
IP_KEYWORDS = {"ip", "ip_address"}
REDACTED = "[REDACTED]"
CORRELATION_ID_HEADER = "x-request-id"
_correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class OpsEvent(TypedDict):
    timestamp: str
    level: EventLevel
    component: str
    event_type: str
    message: str
    correlation_id: str | None
    payload: dict[str, Any]


def iso_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def mask_ip(value: str) -> str:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return REDACTED
    prefix = 24 if address.version == 4 else 48
    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    return f"{network.network_address}/{prefix}"


def redact_text(value: str) -> str:
    value = EMAIL_RE.sub(REDACTED, value)
    return IPV4_RE.sub(lambda match: f"{match.group(1)}.x", value)


def sanitize_value(value: Any, key_hint: str | None = None) -> Any:
    hint = (key_hint or "").lower()
    if hint and any(keyword in hint for keyword in SENSITIVE_KEYWORDS):
        return REDACTED
    if hint in IP_KEYWORDS and isinstance(value, str):
        return mask_ip(value)
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {key: sanitize_value(nested, str(key)) for key, nested in value.items()}
    if isinstance(value, list | tuple):
        return [sanitize_value(item) for item in value]
    return value


def get_correlation_id() -> str | None:
    return _correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> Token[str | None]:
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token: Token[str | None]) -> None:
    _correlation_id_ctx.reset(token)


def new_correlation_id() -> str:
    return uuid4().hex


class OpsEventBuffer:
    def __init__(self, max_size: int = 500) -> None:
        self._events: deque[OpsEvent] = deque(maxlen=max_size)
        self._lock = Lock()

    def resize(self, max_size: int) -> None:
        with self._lock:
            self._events = deque(self._events, maxlen=max_size)

    def add(self, event: OpsEvent) -> None:
        with self._lock:
            self._events.append(event)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def recent(
        self,
        *,
        limit: int,
        level: EventLevel | None = None,
        event_type: str | None = None,
        correlation_id: str | None = None,
    ) -> list[OpsEvent]:
        with self._lock:
            items = list(self._events)
        filtered = [
            item
            for item in items
            if (level is None or item["level"] == level)
            and (event_type is None or item["event_type"].startswith(event_type))
            and (correlation_id is None or item["correlation_id"] == correlation_id)
        ]
        return list(reversed(filtered[-limit:]))

    def summary(self) -> dict[str, dict[str, int]]:
        """Event counts per type and per level over what is still buffered."""
        with self._lock:
            items = list(self._events)
        return {
            "by_type": dict(Counter(item["event_type"] for item in items)),
            "by_level": dict(Counter(item["level"] for item in items)),
        }


ops_event_buffer = OpsEventBuffer()


class OpsEventHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        event_type = getattr(record, "event_type", None)
        if event_type is None:
            return
        if record.levelno >= logging.ERROR:
            level: EventLevel = "error"
        elif record.levelno >= logging.WARNING:
            level = "warning"
        else:
            level = "info"

        payload = sanitize_value(getattr(record, "ops_payload", {}))
        if not isinstance(payload, dict):
            payload = {"value": payload}

        ops_event_buffer.add(
            {
                "timestamp": iso_now(),
                "level": level,
                "component": record.name,
                "event_type": str(event_type),
                "message": redact_text(record.getMessage()),
                "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
                "payload": payload,
            }
        )


def configure_ops_event_logging(max_size: int) -> None:
    ops_event_buffer.resize(max_size)

    root_logger = logging.getLogger()
    if root_logger.level > logging.INFO or root_logger.level == logging.NOTSET:
        root_logger.setLevel(logging.INFO)
    if not any(isinstance(handler, OpsEventHandler) for handler in root_logger.handlers):
        root_logger.addHandler(OpsEventHandler())
