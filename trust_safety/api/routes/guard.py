from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.api.authn import clip_device_id, resolve_client_ip
from trust_safety.db.connection import get_db
from trust_safety.handlers.farming import record_reputation_action
from trust_safety.handlers.guard import ActionLimits, admit_action
from trust_safety.handlers.ip_reputation import PatternResult

router = APIRouter()


class GuardCheckRequest(BaseModel):
    action_type: str = Field(min_length=1, max_length=64)
    profile_id: str | None = Field(default=None, max_length=64)
    resource_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] = Field(default_factory=dict)
    limits: ActionLimits | None = None


class GuardCheckResponse(BaseModel):
    allowed: bool
    ip_remaining: int | None = None
    profile_remaining: int | None = None
    degraded: bool = False
    pattern: PatternResult | None = None


class ReputationEventRequest(BaseModel):
    target_profile_id: str = Field(min_length=1, max_length=64)
    action_type: str = Field(min_length=1, max_length=64)
    source_profile_id: str | None = Field(default=None, max_length=64)
    resource_id: str | None = Field(default=None, max_length=64)
    points: int = 0


@router.post("/check", response_model=GuardCheckResponse)
async def check_action(
    body: GuardCheckRequest,
    request: Request,
    session: AsyncSession = Depends(get_db),
    user_agent: Annotated[str | None, Header()] = None,
    x_device_id: Annotated[str | None, Header()] = None,
) -> GuardCheckResponse:
    outcome = await admit_action(
        session,
        body.action_type,
        ip_address=resolve_client_ip(request),
        profile_id=body.profile_id,
        resource_id=body.resource_id,
        device_id=clip_device_id(x_device_id),
        user_agent=user_agent,
        metadata=body.metadata,
        limits=body.limits,
    )
    return GuardCheckResponse(
        allowed=outcome.allowed,
        ip_remaining=outcome.ip_limit.remaining if outcome.ip_limit else None,
        profile_remaining=outcome.profile_limit.remaining if outcome.profile_limit else None,
        degraded=outcome.degraded,
        pattern=outcome.pattern,
    )


@router.post("/reputation", status_code=201)
async def reputation_event(
    body: ReputationEventRequest,
    session: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    row = await record_reputation_action(
        session,
        body.target_profile_id,
        body.action_type,
        body.source_profile_id,
        body.resource_id,
        body.points,
    )
    return {"recorded": row is not None}
