from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trust_safety.api.middleware.request_context import RequestContextMiddleware
from trust_safety.api.routes import api_router
from trust_safety.config import get_settings
from trust_safety.db.connection import check_db_health
from trust_safety.errors import (
    Blocked,
    FarmingDetected,
    InvalidTransition,
    NotFound,
    RateLimited,
    StoreUnavailable,
    TrustSafetyError,
)
from trust_safety.ops.events import configure_ops_event_logging

STATUS_CODES: dict[type[TrustSafetyError], int] = {
    RateLimited: 429,
    Blocked: 403,
    FarmingDetected: 429,
    NotFound: 404,
    InvalidTransition: 409,
    StoreUnavailable: 503,
}

settings = get_settings()
configure_ops_event_logging(max_size=settings.ops_event_buffer_size)

app = FastAPI(title="Trust & Safety", version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-Request-Id"],
)
app.include_router(api_router)


@app.exception_handler(TrustSafetyError)
async def trust_safety_error_handler(request: Request, exc: TrustSafetyError) -> JSONResponse:
    headers = {}
    if exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(
        status_code=STATUS_CODES.get(type(exc), 400),
        content={"error": exc.to_payload()},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db() -> dict[str, str]:
    if await check_db_health():
        return {"status": "ok"}
    raise HTTPException(status_code=503, detail="database unavailable")
