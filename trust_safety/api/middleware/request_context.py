from __future__ import annotations

import logging
from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from trust_safety.api.authn import resolve_client_ip
from trust_safety.ops.events import (
    CORRELATION_ID_HEADER,
    new_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

QUIET_PATHS = frozenset({"/health", "/health/db"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id and the caller address to every request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or new_correlation_id()
        token = set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id
        request.state.client_ip = resolve_client_ip(request)
        start = perf_counter()
        payload = {"method": request.method, "path": request.url.path, "ip_address": request.state.client_ip}

        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception(
                "Request failed %s %s",
                request.method,
                request.url.path,
                extra={
                    "event_type": "api.request.failed",
                    "correlation_id": correlation_id,
                    "ops_payload": {**payload, "duration_ms": int((perf_counter() - start) * 1000)},
                },
            )
            raise
        else:
            response.headers["X-Request-Id"] = correlation_id
            if request.url.path not in QUIET_PATHS:
                duration_ms = int((perf_counter() - start) * 1000)
                logger.log(
                    logging.WARNING if response.status_code >= 500 else logging.INFO,
                    "Request completed %s %s -> %d (%dms)",
                    request.method,
                    request.url.path,
                    response.status_code,
                    duration_ms,
                    extra={
                        "event_type": "api.request.completed",
                        "correlation_id": correlation_id,
                        "ops_payload": {**payload, "status_code": response.status_code, "duration_ms": duration_ms},
                    },
                )
            return response
        finally:
            reset_correlation_id(token)
