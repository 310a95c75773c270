from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.db.store import store_call
from trust_safety.models.notification import NOTIFICATION_TYPES, AdminNotification

logger = logging.getLogger(__name__)


async def notify_admins(
    session: AsyncSession,
    *,
    notification_type: str,
    item_kind: str,
    item_id: str,
    priority: int,
    severity: str | None = None,
    payload: dict[str, Any] | None = None,
    recipients: Iterable[str] | None = None,
) -> int:
    """Queue a notification per recipient, skipping ones they have not read yet.

    Runs inside a SAVEPOINT on the caller's transaction; the caller commits.
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")
    targets = list(dict.fromkeys(recipients if recipients is not None else get_settings().admin_profile_id_list()))
    if not targets:
        return 0

    try:
        async with session.begin_nested():
            result = await session.execute(
                select(AdminNotification.recipient_id).where(
                    AdminNotification.recipient_id.in_(targets),
                    AdminNotification.type == notification_type,
                    AdminNotification.item_kind == item_kind,
                    AdminNotification.item_id == item_id,
                    AdminNotification.read_at.is_(None),
                )
            )
            already = set(result.scalars().all())
            created = 0
            for recipient in targets:
                if recipient in already:
                    continue
                session.add(
                    AdminNotification(
                        recipient_id=recipient,
                        type=notification_type,
                        item_kind=item_kind,
                        item_id=item_id,
                        priority=priority,
                        severity=severity,
                        payload=payload or {},
                        created_at=datetime.now(UTC),
                    )
                )
                created += 1
            await session.flush()
    except SQLAlchemyError:
        logger.warning(
            "Failed to queue %s notifications for %s %s",
            notification_type,
            item_kind,
            item_id,
            exc_info=True,
            extra={"event_type": "notifications.write_failed"},
        )
        return 0
    return created


async def list_notifications(
    session: AsyncSession, recipient_id: str, *, unread_only: bool = True, limit: int = 50
) -> list[AdminNotification]:
    query = select(AdminNotification).where(AdminNotification.recipient_id == recipient_id)
    if unread_only:
        query = query.where(AdminNotification.read_at.is_(None))
    result = await session.execute(
        query.order_by(AdminNotification.priority.desc(), AdminNotification.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def mark_notifications_read(session: AsyncSession, recipient_id: str, ids: Iterable[UUID]) -> int:
    """Stamp ``read_at`` on the recipient's own unread notifications among ``ids``."""
    wanted = list(dict.fromkeys(ids))
    if not wanted:
        return 0
    async with store_call("notification read"):
        result = await session.execute(
            update(AdminNotification)
            .where(
                AdminNotification.recipient_id == recipient_id,
                AdminNotification.id.in_(wanted),
                AdminNotification.read_at.is_(None),
            )
            .values(read_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    return result.rowcount or 0
