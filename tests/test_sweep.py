from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.db.activity_log import ActivityRecord
from trust_safety.db.rate_limit import RateLimitCounter
from trust_safety.handlers.activity import log_ip_activity
from trust_safety.handlers.moderation import enqueue_flag
from trust_safety.handlers.rate_limit import check_rate_limit
from trust_safety.scheduler import run_sweep, scheduler_loop
from trust_safety.scheduler.main import SWEEP_LOCK


@pytest.mark.asyncio
async def test_sweep_escalates_and_prunes(db_session: AsyncSession) -> None:
    now = datetime.now(UTC)
    await enqueue_flag(db_session, "clip-s1", ["spam"], 4.0)
    await check_rate_limit(db_session, "ip:old", "comment", 3, 1, now=now - timedelta(days=3))
    await check_rate_limit(db_session, "ip:new", "comment", 3, 1, now=now + timedelta(hours=25))
    await log_ip_activity(db_session, "198.51.100.1", "comment", now=now - timedelta(days=45))
    await log_ip_activity(db_session, "198.51.100.1", "comment", now=now)

    result = await run_sweep(session=db_session, now=now + timedelta(hours=25))

    assert result.errors == []
    assert result.escalated == 1
    assert result.pruned_counters == 1
    assert result.pruned_activity == 1
    counters = await db_session.execute(select(RateLimitCounter.subject))
    assert counters.scalars().all() == ["ip:new"]
    activity = await db_session.execute(select(ActivityRecord.id))
    assert len(activity.scalars().all()) == 1


@pytest.mark.asyncio
async def test_sweep_reports_store_errors() -> None:
    session = AsyncMock()
    failure = OperationalError("SELECT", {}, Exception("down"))
    with patch("trust_safety.scheduler.main.escalate_stale_items", AsyncMock(side_effect=failure)):
        result = await run_sweep(session=session)

    assert result.escalated == 0
    assert len(result.errors) == 1
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_overlapping_sweep_is_skipped() -> None:
    async with SWEEP_LOCK:
        result = await run_sweep(session=AsyncMock())
    assert result.errors == ["sweep already running"]


@pytest.mark.asyncio
async def test_scheduler_loop_runs_requested_iterations() -> None:
    session = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)

    with (
        patch("trust_safety.scheduler.main.run_sweep", AsyncMock()) as sweep,
        patch("trust_safety.scheduler.main.asyncio.sleep", AsyncMock()) as sleep,
    ):
        await scheduler_loop(session_factory=factory, interval_minutes=0.5, iterations=2)

    assert sweep.await_count == 2
    sweep.assert_awaited_with(session=session)
    sleep.assert_awaited_once_with(30.0)


@pytest.mark.asyncio
async def test_sweep_keeps_counters_for_windows_still_open(db_session: AsyncSession) -> None:
    two_days = 2 * 24 * 60
    start = datetime(2026, 3, 2, 1, 0, 0, tzinfo=UTC)
    await check_rate_limit(db_session, "ip:slow", "account_creation", 1, two_days, now=start)

    result = await run_sweep(session=db_session, now=start + timedelta(hours=25))
    retry = await check_rate_limit(
        db_session, "ip:slow", "account_creation", 1, two_days, now=start + timedelta(hours=25)
    )

    assert result.pruned_counters == 0
    assert retry.allowed is False
