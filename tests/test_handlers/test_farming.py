from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.db.reputation_log import ReputationAction
from trust_safety.errors import FarmingDetected
from trust_safety.handlers.farming import (
    check_reputation_farming,
    detect_suspicious_reputation_pattern,
    log_reputation_action,
    record_reputation_action,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


async def _event_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(ReputationAction.id)))
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_second_event_in_cooldown_is_farming(db_session: AsyncSession) -> None:
    await log_reputation_action(db_session, "target", "reaction", "source", "clip-1", 1, now=NOW)

    verdict = await check_reputation_farming(
        db_session, "target", "source", "reaction", 60, now=NOW + timedelta(minutes=10)
    )

    assert verdict.is_farming is True
    assert verdict.count == 1
    assert verdict.retry_after == pytest.approx(50 * 60)


@pytest.mark.asyncio
async def test_event_after_cooldown_is_admitted(db_session: AsyncSession) -> None:
    await log_reputation_action(db_session, "target", "reaction", "source", now=NOW)

    verdict = await check_reputation_farming(
        db_session, "target", "source", "reaction", 60, now=NOW + timedelta(minutes=61)
    )
    assert verdict.is_farming is False


@pytest.mark.asyncio
async def test_other_pairs_and_actions_do_not_count(db_session: AsyncSession) -> None:
    await log_reputation_action(db_session, "target", "reaction", "source", now=NOW)

    other_source = await check_reputation_farming(db_session, "target", "someone-else", "reaction", 60, now=NOW)
    other_action = await check_reputation_farming(db_session, "target", "source", "endorsement", 60, now=NOW)

    assert other_source.is_farming is False
    assert other_action.is_farming is False


@pytest.mark.asyncio
async def test_threshold_allows_small_bursts(db_session: AsyncSession) -> None:
    for minutes in (0, 5):
        await log_reputation_action(db_session, "target", "reaction", "source", now=NOW + timedelta(minutes=minutes))

    below = await check_reputation_farming(
        db_session, "target", "source", "reaction", 60, threshold=3, now=NOW + timedelta(minutes=10)
    )
    await log_reputation_action(db_session, "target", "reaction", "source", now=NOW + timedelta(minutes=10))
    at_limit = await check_reputation_farming(
        db_session, "target", "source", "reaction", 60, threshold=3, now=NOW + timedelta(minutes=20)
    )

    assert below.is_farming is False
    assert at_limit.is_farming is True
    assert at_limit.count == 3
    # The oldest event leaves the window at NOW + 60m.
    assert at_limit.retry_after == pytest.approx(40 * 60)


@pytest.mark.asyncio
async def test_self_dealing_is_always_farming() -> None:
    session = AsyncMock()
    verdict = await check_reputation_farming(session, "me", "me", "reaction", 60)
    assert verdict.is_farming is True
    assert verdict.reason == "self_dealing"
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_missing_source_is_never_farming() -> None:
    verdict = await check_reputation_farming(AsyncMock(), "target", None, "system_bonus", 60)
    assert verdict.is_farming is False


@pytest.mark.asyncio
async def test_check_fails_open_on_store_error() -> None:
    session = AsyncMock()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
    verdict = await check_reputation_farming(session, "target", "source", "reaction", 60)
    assert verdict.is_farming is False
    assert verdict.degraded is True


@pytest.mark.asyncio
async def test_log_swallows_store_errors() -> None:
    session = AsyncMock()
    session.add = lambda row: None
    session.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
    assert await log_reputation_action(session, "target", "reaction", "source") is None
    session.rollback.assert_awaited()


@pytest.mark.asyncio
async def test_record_rejects_without_writing(db_session: AsyncSession) -> None:
    await record_reputation_action(db_session, "target", "reaction", "source", points=1, now=NOW)

    with pytest.raises(FarmingDetected) as excinfo:
        await record_reputation_action(
            db_session, "target", "reaction", "source", points=1, now=NOW + timedelta(minutes=1)
        )

    assert excinfo.value.retry_after == pytest.approx(59 * 60)
    assert excinfo.value.to_payload()["kind"] == "farming_detected"
    assert await _event_count(db_session) == 1

    await record_reputation_action(db_session, "target", "reaction", "source", points=1, now=NOW + timedelta(hours=2))
    assert await _event_count(db_session) == 2


@pytest.mark.asyncio
async def test_reputation_farming_pattern(db_session: AsyncSession) -> None:
    for index in range(51):
        await log_reputation_action(
            db_session, "star", "reaction", f"source-{index % 3}", points=1, now=NOW - timedelta(minutes=index)
        )

    result = await detect_suspicious_reputation_pattern(db_session, "star", now=NOW)

    assert result.is_suspicious is True
    assert result.pattern_type == "reputation_farming"
    assert result.distinct_sources == 3


@pytest.mark.asyncio
async def test_rapid_reputation_gain_pattern(db_session: AsyncSession) -> None:
    for index in range(20):
        await log_reputation_action(
            db_session, "rocket", "endorsement", f"source-{index}", points=60, now=NOW - timedelta(minutes=index)
        )

    result = await detect_suspicious_reputation_pattern(db_session, "rocket", now=NOW)

    assert result.pattern_type == "rapid_reputation_gain"
    assert result.total_points == 1200


@pytest.mark.asyncio
async def test_organic_reputation_is_not_suspicious(db_session: AsyncSession) -> None:
    for index in range(10):
        await log_reputation_action(db_session, "regular", "reaction", f"source-{index}", points=1, now=NOW)

    result = await detect_suspicious_reputation_pattern(db_session, "regular", now=NOW)
    assert result.is_suspicious is False
    assert result.action_count == 10
