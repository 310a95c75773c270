"""Reputation farming guard.

The guard reads the same ledger that ``log_reputation_action`` writes, so it
must be consulted before the write. ``record_reputation_action`` bundles the
two in the right order.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.db.reputation_log import ReputationAction
from trust_safety.db.store import ensure_utc, safe_rollback, store_call
from trust_safety.errors import FarmingDetected, StoreUnavailable

logger = logging.getLogger(__name__)


class FarmingResult(BaseModel):
    is_farming: bool
    reason: str | None = None
    count: int = 0
    retry_after: float | None = None
    degraded: bool = False


class ReputationPatternResult(BaseModel):
    is_suspicious: bool
    pattern_type: str | None = None
    action_count: int = 0
    distinct_sources: int = 0
    total_points: int = 0


async def check_reputation_farming(
    session: AsyncSession,
    target_profile_id: str,
    source_profile_id: str | None,
    action_type: str,
    cooldown_minutes: int | None = None,
    threshold: int | None = None,
    *,
    now: datetime | None = None,
) -> FarmingResult:
    if not source_profile_id:
        return FarmingResult(is_farming=False)
    if source_profile_id == target_profile_id:
        return FarmingResult(is_farming=True, reason="self_dealing")

    settings = get_settings()
    cooldown = settings.farming_cooldown_minutes if cooldown_minutes is None else cooldown_minutes
    limit = settings.farming_event_threshold if threshold is None else threshold
    if limit < 1:
        raise ValueError("threshold must be at least 1")
    current = now or datetime.now(UTC)
    window = timedelta(minutes=cooldown)

    try:
        async with store_call("farming check"):
            result = await session.execute(
                select(ReputationAction.created_at)
                .where(
                    ReputationAction.profile_id == target_profile_id,
                    ReputationAction.source_profile_id == source_profile_id,
                    ReputationAction.action_type == action_type,
                    ReputationAction.created_at > current - window,
                )
                .order_by(ReputationAction.created_at.asc())
            )
            timestamps = [ensure_utc(value) for value in result.scalars().all()]
    except StoreUnavailable as exc:
        await safe_rollback(session)
        logger.warning(
            "Farming check unavailable for %s -> %s, allowing: %s",
            source_profile_id,
            target_profile_id,
            exc.message,
            extra={"event_type": "farming.fail_open"},
        )
        return FarmingResult(is_farming=False, degraded=True)

    count = len(timestamps)
    if count < limit:
        return FarmingResult(is_farming=False, count=count)

    # The count drops below the limit once this event ages out.
    releasing = timestamps[count - limit]
    retry_after = max(0.0, (releasing + window - current).total_seconds())
    return FarmingResult(
        is_farming=True,
        reason=f"{count} {action_type} event(s) from this source within {cooldown} minutes",
        count=count,
        retry_after=retry_after,
    )


async def log_reputation_action(
    session: AsyncSession,
    target_profile_id: str,
    action_type: str,
    source_profile_id: str | None = None,
    resource_id: str | None = None,
    points: int = 0,
    *,
    now: datetime | None = None,
) -> ReputationAction | None:
    row = ReputationAction(
        profile_id=target_profile_id,
        action_type=action_type,
        source_profile_id=source_profile_id,
        resource_id=resource_id,
        points=points,
        created_at=now or datetime.now(UTC),
    )
    try:
        async with store_call("reputation log write"):
            session.add(row)
            await session.commit()
    except StoreUnavailable as exc:
        await safe_rollback(session)
        logger.warning(
            "Dropping reputation event %s for %s: %s",
            action_type,
            target_profile_id,
            exc.message,
            extra={
                "event_type": "reputation.write_failed",
                "ops_payload": {"profile_id": target_profile_id, "action_type": action_type},
            },
        )
        return None
    return row


async def record_reputation_action(
    session: AsyncSession,
    target_profile_id: str,
    action_type: str,
    source_profile_id: str | None = None,
    resource_id: str | None = None,
    points: int = 0,
    *,
    cooldown_minutes: int | None = None,
    now: datetime | None = None,
) -> ReputationAction | None:
    """Write a reputation event only if the farming guard admits it."""
    verdict = await check_reputation_farming(
        session,
        target_profile_id,
        source_profile_id,
        action_type,
        cooldown_minutes,
        now=now,
    )
    if verdict.is_farming:
        logger.info(
            "Rejected %s from %s to %s: %s",
            action_type,
            source_profile_id,
            target_profile_id,
            verdict.reason,
            extra={
                "event_type": "farming.detected",
                "ops_payload": {"action_type": action_type, "count": verdict.count},
            },
        )
        raise FarmingDetected(
            "This action was repeated too soon for the same profile",
            retry_after=verdict.retry_after,
        )
    return await log_reputation_action(
        session,
        target_profile_id,
        action_type,
        source_profile_id,
        resource_id,
        points,
        now=now,
    )


async def detect_suspicious_reputation_pattern(
    session: AsyncSession,
    profile_id: str,
    window_hours: int = 24,
    *,
    now: datetime | None = None,
) -> ReputationPatternResult:
    settings = get_settings()
    since = (now or datetime.now(UTC)) - timedelta(hours=window_hours)
    try:
        async with store_call("reputation pattern"):
            result = await session.execute(
                select(
                    func.count(ReputationAction.id),
                    func.count(distinct(ReputationAction.source_profile_id)),
                    func.coalesce(func.sum(ReputationAction.points), 0),
                ).where(ReputationAction.profile_id == profile_id, ReputationAction.created_at > since)
            )
            action_count, distinct_sources, total_points = result.one()
    except StoreUnavailable:
        await safe_rollback(session)
        logger.warning("Reputation pattern check unavailable for %s", profile_id, exc_info=True)
        return ReputationPatternResult(is_suspicious=False)

    stats = {
        "action_count": int(action_count),
        "distinct_sources": int(distinct_sources),
        "total_points": int(total_points),
    }
    if (
        stats["action_count"] > settings.reputation_pattern_min_actions
        and stats["distinct_sources"] < settings.reputation_pattern_max_sources
    ):
        return ReputationPatternResult(is_suspicious=True, pattern_type="reputation_farming", **stats)
    if stats["total_points"] > settings.reputation_rapid_gain_points:
        return ReputationPatternResult(is_suspicious=True, pattern_type="rapid_reputation_gain", **stats)
    return ReputationPatternResult(is_suspicious=False, **stats)
