from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.db.activity_log import ActivityRecord
from trust_safety.db.store import safe_rollback, store_call
from trust_safety.errors import StoreUnavailable

logger = logging.getLogger(__name__)

ACCOUNT_CREATION = "account_creation"


async def log_ip_activity(
    session: AsyncSession,
    ip_address: str | None,
    action_type: str,
    *,
    profile_id: str | None = None,
    resource_id: str | None = None,
    device_id: str | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ActivityRecord | None:
    """Append an activity row; never fails the action it records."""
    if not ip_address:
        return None
    record = ActivityRecord(
        ip_address=ip_address,
        action_type=action_type,
        profile_id=profile_id,
        resource_id=resource_id,
        device_id=device_id[:128] if device_id else None,
        user_agent=user_agent[:512] if user_agent else None,
        details=metadata or {},
        created_at=now or datetime.now(UTC),
    )
    try:
        async with store_call("activity log write"):
            session.add(record)
            await session.commit()
    except StoreUnavailable as exc:
        await safe_rollback(session)
        logger.warning(
            "Dropping activity record for %s/%s: %s",
            ip_address,
            action_type,
            exc.message,
            extra={
                "event_type": "activity.write_failed",
                "ops_payload": {"ip_address": ip_address, "action_type": action_type},
            },
        )
        return None
    return record


async def prune_activity(session: AsyncSession, *, older_than: datetime) -> int:
    result = await session.execute(delete(ActivityRecord).where(ActivityRecord.created_at < older_than))
    await session.commit()
    logger.info(
        "Pruned %d activity rows older than %s",
        result.rowcount or 0,
        older_than.isoformat(),
        extra={"event_type": "activity.pruned"},
    )
    return int(result.rowcount or 0)
