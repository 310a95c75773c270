from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from trust_safety.api.authn import AdminContext, require_admin
from trust_safety.config import Settings, get_settings
from trust_safety.db.connection import check_db_health
from trust_safety.ops import events as ops_events
from trust_safety.ops.events import EventLevel

router = APIRouter()


class ServiceStatus(BaseModel):
    name: str
    status: Literal["ok", "degraded", "error"]
    detail: str | None = None


class OpsSummaryResponse(BaseModel):
    generated_at: str
    services: list[ServiceStatus]
    events_by_type: dict[str, int]
    events_by_level: dict[str, int]


class OpsEventResponse(BaseModel):
    timestamp: str
    level: EventLevel
    component: str
    event_type: str
    message: str
    correlation_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


@router.get("/events", response_model=list[OpsEventResponse])
async def events(
    _: Annotated[AdminContext, Depends(require_admin)],
    limit: int = Query(100, ge=1, le=500),
    level: EventLevel | None = Query(default=None),
    event_type: str | None = Query(default=None, alias="type"),
    correlation_id: str | None = Query(default=None),
) -> list[OpsEventResponse]:
    items = ops_events.ops_event_buffer.recent(
        limit=limit, level=level, event_type=event_type, correlation_id=correlation_id
    )
    return [OpsEventResponse(**item) for item in items]


@router.get("/summary", response_model=OpsSummaryResponse)
async def summary(
    settings: Annotated[Settings, Depends(get_settings)],
    _: Annotated[AdminContext, Depends(require_admin)],
) -> OpsSummaryResponse:
    counts = ops_events.ops_event_buffer.summary()
    fail_open = counts["by_type"].get("rate_limit.fail_open", 0) + counts["by_type"].get("patterns.fail_open", 0)
    db_ok = await check_db_health()
    services = [
        ServiceStatus(name="api", status="ok"),
        ServiceStatus(name="database", status="ok" if db_ok else "error"),
        ServiceStatus(
            name="risk_checks",
            status="degraded" if fail_open else "ok",
            detail=f"{fail_open} fail-open decision(s) buffered" if fail_open else None,
        ),
        ServiceStatus(
            name="rate_limit_policy",
            status="ok",
            detail="fail open" if settings.rate_limit_fail_open else "fail closed",
        ),
    ]
    return OpsSummaryResponse(
        generated_at=ops_events.iso_now(),
        services=services,
        events_by_type=counts["by_type"],
        events_by_level=counts["by_level"],
    )
