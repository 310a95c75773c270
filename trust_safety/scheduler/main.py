from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_safety.config import get_settings
from trust_safety.handlers.activity import prune_activity
from trust_safety.handlers.moderation import escalate_stale_items
from trust_safety.handlers.rate_limit import prune_rate_limit_counters

logger = logging.getLogger(__name__)

SWEEP_LOCK = asyncio.Lock()


@dataclass
class SweepResult:
    escalated: int = 0
    pruned_counters: int = 0
    pruned_activity: int = 0
    errors: list[str] = field(default_factory=list)


async def run_sweep(*, session: AsyncSession, now: datetime | None = None) -> SweepResult:
    if SWEEP_LOCK.locked():
        return SweepResult(errors=["sweep already running"])

    settings = get_settings()
    current = now or datetime.now(UTC)
    result = SweepResult()
    async with SWEEP_LOCK:
        try:
            result.escalated = await escalate_stale_items(session, now=current)
            result.pruned_counters = await prune_rate_limit_counters(session, now=current)
            result.pruned_activity = await prune_activity(
                session, older_than=current - timedelta(days=settings.activity_retention_days)
            )
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception(
                "Maintenance sweep failed: %s",
                exc,
                extra={
                    "event_type": "scheduler.sweep.error",
                    "ops_payload": {"escalated": result.escalated, "exception_type": type(exc).__name__},
                },
            )
            result.errors.append(str(exc))
            return result

    logger.info(
        "Sweep completed: %d escalated, %d counters and %d activity rows pruned",
        result.escalated,
        result.pruned_counters,
        result.pruned_activity,
        extra={
            "event_type": "scheduler.sweep.completed",
            "ops_payload": {
                "escalated": result.escalated,
                "pruned_counters": result.pruned_counters,
                "pruned_activity": result.pruned_activity,
            },
        },
    )
    return result


async def scheduler_loop(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    interval_minutes: float,
    iterations: int | None = None,
) -> None:
    """Run the sweep forever, or ``iterations`` times when given."""
    completed = 0
    while iterations is None or completed < iterations:
        async with session_factory() as session:
            await run_sweep(session=session)
        completed += 1
        if iterations is not None and completed >= iterations:
            break
        await asyncio.sleep(interval_minutes * 60)
