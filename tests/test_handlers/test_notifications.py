from __future__ import annotations

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.handlers.notifications import list_notifications, mark_notifications_read, notify_admins


@pytest.mark.asyncio
async def test_defaults_to_every_admin_and_skips_unread_duplicates(db_session: AsyncSession) -> None:
    first = await notify_admins(
        db_session,
        notification_type="moderation_high_risk_flag",
        item_kind="flag",
        item_id="item-1",
        priority=75,
        severity="high",
    )
    second = await notify_admins(
        db_session,
        notification_type="moderation_high_risk_flag",
        item_kind="flag",
        item_id="item-1",
        priority=75,
    )
    await db_session.commit()

    assert first == 2
    assert second == 0
    assert len(await list_notifications(db_session, "admin-1")) == 1


@pytest.mark.asyncio
async def test_read_notification_allows_a_new_one(db_session: AsyncSession) -> None:
    await notify_admins(
        db_session,
        notification_type="moderation_assigned_item",
        item_kind="report",
        item_id="item-2",
        priority=50,
        recipients=["admin-2"],
    )
    await db_session.commit()
    (row,) = await list_notifications(db_session, "admin-2")
    assert await mark_notifications_read(db_session, "admin-2", [row.id]) == 1

    again = await notify_admins(
        db_session,
        notification_type="moderation_assigned_item",
        item_kind="report",
        item_id="item-2",
        priority=50,
        recipients=["admin-2"],
    )
    await db_session.commit()

    assert again == 1
    assert len(await list_notifications(db_session, "admin-2")) == 1
    assert len(await list_notifications(db_session, "admin-2", unread_only=False)) == 2


@pytest.mark.asyncio
async def test_mark_read_only_touches_the_recipients_unread_rows(db_session: AsyncSession) -> None:
    await notify_admins(
        db_session,
        notification_type="moderation_high_risk_flag",
        item_kind="flag",
        item_id="item-3",
        priority=75,
    )
    await db_session.commit()
    (mine,) = await list_notifications(db_session, "admin-1")
    (theirs,) = await list_notifications(db_session, "admin-2")

    assert await mark_notifications_read(db_session, "admin-1", [mine.id, theirs.id, uuid4()]) == 1
    assert await mark_notifications_read(db_session, "admin-1", [mine.id]) == 0
    assert await mark_notifications_read(db_session, "admin-1", []) == 0
    assert await list_notifications(db_session, "admin-1") == []
    assert [row.id for row in await list_notifications(db_session, "admin-2")] == [theirs.id]


@pytest.mark.asyncio
async def test_unknown_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        await notify_admins(
            MagicMock(), notification_type="sms_blast", item_kind="flag", item_id="x", priority=1
        )


@pytest.mark.asyncio
async def test_write_failure_returns_zero() -> None:
    session = MagicMock()
    session.begin_nested.side_effect = OperationalError("SAVEPOINT", {}, Exception("down"))

    created = await notify_admins(
        session, notification_type="moderation_escalated_item", item_kind="flag", item_id="x", priority=1
    )

    assert created == 0
