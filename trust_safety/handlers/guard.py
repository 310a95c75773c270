"""Admission pipeline for inbound user actions.

Blacklist first, then pattern detection, then the per-IP and per-profile
limits. A critical pattern blocks a caller even when it is over its limit.
Only admitted actions reach the activity ledger.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.errors import Blocked, RateLimited
from trust_safety.handlers.activity import log_ip_activity
from trust_safety.handlers.ip_reputation import PatternResult, detect_suspicious_ip_pattern, is_ip_blacklisted
from trust_safety.handlers.rate_limit import RateLimitResult, check_ip_rate_limit, check_profile_rate_limit

logger = logging.getLogger(__name__)


class ActionLimits(BaseModel):
    ip_max_requests: int | None = None
    ip_window_minutes: int | None = Field(default=None, gt=0)
    profile_max_requests: int | None = None
    profile_window_minutes: int | None = Field(default=None, gt=0)


class AdmissionResult(BaseModel):
    allowed: bool = True
    ip_limit: RateLimitResult | None = None
    profile_limit: RateLimitResult | None = None
    pattern: PatternResult | None = None

    @property
    def degraded(self) -> bool:
        checks = [self.ip_limit, self.profile_limit, self.pattern]
        return any(check is not None and check.degraded for check in checks)


def _rate_limited(action_type: str, limit: RateLimitResult, now: datetime) -> RateLimited:
    return RateLimited(f"Too many {action_type} requests", retry_after=limit.retry_after(now))


async def admit_action(
    session: AsyncSession,
    action_type: str,
    *,
    ip_address: str | None,
    profile_id: str | None = None,
    resource_id: str | None = None,
    device_id: str | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
    limits: ActionLimits | None = None,
    now: datetime | None = None,
) -> AdmissionResult:
    """Admit or reject an action; raises ``Blocked`` or ``RateLimited`` on rejection."""
    current = now or datetime.now(UTC)
    bounds = limits or ActionLimits()
    outcome = AdmissionResult()

    if ip_address and await is_ip_blacklisted(session, ip_address, now=current):
        logger.info(
            "Rejected %s from blacklisted IP %s",
            action_type,
            ip_address,
            extra={"event_type": "guard.blocked", "ops_payload": {"reason": "blacklisted", "action_type": action_type}},
        )
        raise Blocked("Requests from this address are blocked")

    if ip_address:
        outcome.pattern = await detect_suspicious_ip_pattern(session, ip_address, action_type, now=current)
        if outcome.pattern.blocks:
            logger.warning(
                "Rejected %s from %s: critical %s pattern",
                action_type,
                ip_address,
                outcome.pattern.pattern_type,
                extra={
                    "event_type": "guard.blocked",
                    "ops_payload": {"reason": outcome.pattern.pattern_type, "action_type": action_type},
                },
            )
            raise Blocked("Suspicious activity detected from this address")

    if ip_address:
        outcome.ip_limit = await check_ip_rate_limit(
            session,
            ip_address,
            action_type,
            bounds.ip_max_requests,
            bounds.ip_window_minutes,
            now=current,
        )
        if not outcome.ip_limit.allowed:
            raise _rate_limited(action_type, outcome.ip_limit, current)

    if profile_id:
        outcome.profile_limit = await check_profile_rate_limit(
            session,
            profile_id,
            action_type,
            bounds.profile_max_requests,
            bounds.profile_window_minutes,
            now=current,
        )
        if not outcome.profile_limit.allowed:
            raise _rate_limited(action_type, outcome.profile_limit, current)

    await log_ip_activity(
        session,
        ip_address,
        action_type,
        profile_id=profile_id,
        resource_id=resource_id,
        device_id=device_id,
        user_agent=user_agent,
        metadata=metadata,
        now=current,
    )
    return outcome
