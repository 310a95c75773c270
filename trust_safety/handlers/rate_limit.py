"""Fixed-window rate limiting backed by the shared store.

The increment and the admission decision are one conditional upsert, so two
concurrent requests can never both see "below the limit" for the same key.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.db.rate_limit import RateLimitCounter
from trust_safety.db.store import dialect_name, safe_rollback, store_call
from trust_safety.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime | None = None
    degraded: bool = False

    def retry_after(self, now: datetime | None = None) -> float | None:
        if self.allowed or self.reset_at is None:
            return None
        current = now or datetime.now(UTC)
        return max(0.0, (self.reset_at - current).total_seconds())


def ip_subject(ip_address: str) -> str:
    return f"ip:{ip_address}"


def profile_subject(profile_id: str) -> str:
    return f"profile:{profile_id}"


def window_bounds(now: datetime, window_minutes: int) -> tuple[datetime, datetime]:
    span = window_minutes * 60
    epoch = int(now.timestamp())
    start = datetime.fromtimestamp(epoch - (epoch % span), UTC)
    return start, start + timedelta(seconds=span)


async def _increment_counter(
    session: AsyncSession,
    *,
    subject: str,
    action_type: str,
    window_start: datetime,
    window_end: datetime,
    max_requests: int,
    window_minutes: int,
    now: datetime,
) -> int | None:
    """Return the post-increment count, or ``None`` when the window is full."""
    dialect = await dialect_name(session)
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(RateLimitCounter).values(
        subject=subject,
        action_type=action_type,
        window_start=window_start,
        count=1,
        max_requests=max_requests,
        window_minutes=window_minutes,
        window_end=window_end,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[
            RateLimitCounter.subject,
            RateLimitCounter.action_type,
            RateLimitCounter.window_start,
        ],
        set_={
            "count": RateLimitCounter.count + 1,
            "max_requests": stmt.excluded.max_requests,
            "updated_at": stmt.excluded.updated_at,
        },
        where=RateLimitCounter.count < max_requests,
    ).returning(RateLimitCounter.count)
    result = await session.execute(stmt)
    row = result.first()
    await session.commit()
    return None if row is None else int(row[0])


async def check_rate_limit(
    session: AsyncSession,
    subject: str,
    action_type: str,
    max_requests: int,
    window_minutes: int,
    *,
    now: datetime | None = None,
) -> RateLimitResult:
    if window_minutes <= 0:
        raise ValueError("window_minutes must be positive")
    current = now or datetime.now(UTC)
    window_start, reset_at = window_bounds(current, window_minutes)
    if max_requests <= 0:
        return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)

    try:
        async with store_call("rate limit increment"):
            count = await _increment_counter(
                session,
                subject=subject,
                action_type=action_type,
                window_start=window_start,
                window_end=reset_at,
                max_requests=max_requests,
                window_minutes=window_minutes,
                now=current,
            )
    except StoreUnavailable as exc:
        await safe_rollback(session)
        if not get_settings().rate_limit_fail_open:
            raise
        logger.warning(
            "Rate limit store unavailable, failing open for %s/%s: %s",
            subject,
            action_type,
            exc.message,
            extra={
                "event_type": "rate_limit.fail_open",
                "ops_payload": {"subject": subject, "action_type": action_type},
            },
        )
        return RateLimitResult(allowed=True, remaining=max_requests, reset_at=None, degraded=True)

    if count is None:
        logger.info(
            "Rate limit reached for %s/%s (%d per %dm)",
            subject,
            action_type,
            max_requests,
            window_minutes,
            extra={
                "event_type": "rate_limit.denied",
                "ops_payload": {"subject": subject, "action_type": action_type, "max_requests": max_requests},
            },
        )
        return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
    return RateLimitResult(allowed=True, remaining=max(0, max_requests - count), reset_at=reset_at)


async def check_ip_rate_limit(
    session: AsyncSession,
    ip_address: str,
    action_type: str,
    max_requests: int | None = None,
    window_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> RateLimitResult:
    settings = get_settings()
    return await check_rate_limit(
        session,
        ip_subject(ip_address),
        action_type,
        settings.default_ip_max_requests if max_requests is None else max_requests,
        settings.default_ip_window_minutes if window_minutes is None else window_minutes,
        now=now,
    )


async def check_profile_rate_limit(
    session: AsyncSession,
    profile_id: str,
    action_type: str,
    max_requests: int | None = None,
    window_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> RateLimitResult:
    settings = get_settings()
    return await check_rate_limit(
        session,
        profile_subject(profile_id),
        action_type,
        settings.default_profile_max_requests if max_requests is None else max_requests,
        settings.default_profile_window_minutes if window_minutes is None else window_minutes,
        now=now,
    )


async def prune_rate_limit_counters(session: AsyncSession, *, now: datetime) -> int:
    """Drop counters whose window ended at or before ``now``."""
    result = await session.execute(delete(RateLimitCounter).where(RateLimitCounter.window_end <= now))
    await session.commit()
    return int(result.rowcount or 0)
