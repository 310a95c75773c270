from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.db.activity_log import ActivityRecord
from trust_safety.errors import Blocked, RateLimited
from trust_safety.handlers.activity import log_ip_activity
from trust_safety.handlers.guard import ActionLimits, admit_action
from trust_safety.handlers.ip_reputation import blacklist_ip

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
TIGHT = ActionLimits(ip_max_requests=3, ip_window_minutes=1)


async def _activity_count(session: AsyncSession, ip_address: str) -> int:
    result = await session.execute(
        select(func.count(ActivityRecord.id)).where(ActivityRecord.ip_address == ip_address)
    )
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_fourth_request_in_window_is_rate_limited(db_session: AsyncSession) -> None:
    for _ in range(3):
        outcome = await admit_action(
            db_session, "comment", ip_address="203.0.113.5", profile_id="p-1", limits=TIGHT, now=T0
        )
        assert outcome.allowed is True

    with pytest.raises(RateLimited) as excinfo:
        await admit_action(db_session, "comment", ip_address="203.0.113.5", profile_id="p-1", limits=TIGHT, now=T0)

    assert excinfo.value.retry_after == pytest.approx(60)
    assert excinfo.value.retry_after_seconds == 60
    assert await _activity_count(db_session, "203.0.113.5") == 3

    later = await admit_action(
        db_session,
        "comment",
        ip_address="203.0.113.5",
        profile_id="p-1",
        limits=TIGHT,
        now=T0 + timedelta(seconds=61),
    )
    assert later.allowed is True
    assert later.ip_limit is not None
    assert later.ip_limit.remaining == 2


@pytest.mark.asyncio
async def test_profile_limit_applies_across_addresses(db_session: AsyncSession) -> None:
    limits = ActionLimits(profile_max_requests=1, profile_window_minutes=5)
    await admit_action(db_session, "reaction", ip_address="198.51.100.1", profile_id="roamer", limits=limits, now=T0)

    with pytest.raises(RateLimited):
        await admit_action(
            db_session, "reaction", ip_address="198.51.100.2", profile_id="roamer", limits=limits, now=T0
        )


@pytest.mark.asyncio
async def test_blacklist_takes_precedence_over_rate_limit(db_session: AsyncSession) -> None:
    await blacklist_ip(db_session, "203.0.113.9", reason="spam", banned_by="admin-1")
    zero = ActionLimits(ip_max_requests=0, ip_window_minutes=1)

    with pytest.raises(Blocked) as excinfo:
        await admit_action(db_session, "comment", ip_address="203.0.113.9", limits=zero, now=T0)

    assert excinfo.value.kind == "blocked"
    assert excinfo.value.retry_after is None
    assert await _activity_count(db_session, "203.0.113.9") == 0


@pytest.mark.asyncio
async def test_critical_pattern_blocks_action(db_session: AsyncSession) -> None:
    for index in range(12):
        await log_ip_activity(db_session, "198.51.100.60", "reaction", profile_id=f"p-{index}", now=T0)

    with pytest.raises(Blocked):
        await admit_action(db_session, "reaction", ip_address="198.51.100.60", profile_id="p-new", now=T0)

    assert await _activity_count(db_session, "198.51.100.60") == 12


@pytest.mark.asyncio
async def test_critical_pattern_blocks_even_when_over_limit(db_session: AsyncSession) -> None:
    for index in range(12):
        await log_ip_activity(db_session, "198.51.100.62", "reaction", profile_id=f"p-{index}", now=T0)
    zero = ActionLimits(ip_max_requests=0, ip_window_minutes=1)

    with pytest.raises(Blocked) as excinfo:
        await admit_action(db_session, "reaction", ip_address="198.51.100.62", limits=zero, now=T0)

    assert excinfo.value.retry_after is None
    assert await _activity_count(db_session, "198.51.100.62") == 12


@pytest.mark.asyncio
async def test_non_critical_pattern_is_reported_not_blocked(db_session: AsyncSession) -> None:
    for index in range(4):
        await log_ip_activity(db_session, "198.51.100.61", "comment", profile_id=f"p-{index}", now=T0)

    outcome = await admit_action(db_session, "comment", ip_address="198.51.100.61", profile_id="p-0", now=T0)

    assert outcome.allowed is True
    assert outcome.pattern is not None
    assert outcome.pattern.pattern_type == "coordinated_profiles"
    assert outcome.degraded is False
    assert await _activity_count(db_session, "198.51.100.61") == 5


@pytest.mark.asyncio
async def test_action_without_address_only_checks_profile(db_session: AsyncSession) -> None:
    outcome = await admit_action(db_session, "comment", ip_address=None, profile_id="p-1", now=T0)

    assert outcome.ip_limit is None
    assert outcome.pattern is None
    assert outcome.profile_limit is not None
    assert outcome.profile_limit.allowed is True
