from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.db.history import (
    AuditActor,
    HistoryEntryRead,
    list_history,
    list_item_history,
    record_history,
)
from trust_safety.ops.events import reset_correlation_id, set_correlation_id

ADMIN = AuditActor(admin_id="admin-1", device_id="laptop", ip_address="192.0.2.1")


@pytest.mark.asyncio
async def test_record_and_list_item_history(db_session: AsyncSession) -> None:
    await record_history(
        db_session,
        item_kind="flag",
        item_id="flag-1",
        action="assigned",
        actor=ADMIN,
        previous_value={"assigned_to": None},
        new_value={"assigned_to": "admin-1"},
    )
    await record_history(db_session, item_kind="flag", item_id="flag-1", action="note_added", notes="looked at it")
    await record_history(db_session, item_kind="flag", item_id="flag-2", action="assigned", actor=ADMIN)
    await db_session.commit()

    rows = await list_item_history(db_session, item_kind="flag", item_id="flag-1")

    assert [row.action for row in rows] == ["assigned", "note_added"]
    assert rows[0].device_id == "laptop"
    assert rows[1].admin_id is None
    read = HistoryEntryRead.from_orm_model(rows[0])
    assert read.new_value == {"assigned_to": "admin-1"}


@pytest.mark.asyncio
async def test_list_history_filters_by_admin_and_kind(db_session: AsyncSession) -> None:
    await record_history(db_session, item_kind="flag", item_id="f", action="assigned", actor=ADMIN)
    await record_history(db_session, item_kind="ip_blacklist", item_id="203.0.113.1", action="ip_banned", actor=ADMIN)
    await record_history(db_session, item_kind="report", item_id="r", action="escalated")
    await db_session.commit()

    by_admin = await list_history(db_session, admin_id="admin-1")
    bans = await list_history(db_session, item_kind="ip_blacklist")

    assert {row.item_id for row in by_admin} == {"f", "203.0.113.1"}
    assert [row.action for row in bans] == ["ip_banned"]


@pytest.mark.asyncio
async def test_history_carries_correlation_id(db_session: AsyncSession) -> None:
    token = set_correlation_id("req-42")
    try:
        entry = await record_history(db_session, item_kind="report", item_id="r-1", action="merged")
    finally:
        reset_correlation_id(token)
    assert entry is not None
    assert entry.correlation_id == "req-42"


@pytest.mark.asyncio
async def test_unknown_action_is_rejected() -> None:
    with pytest.raises(ValueError):
        await record_history(MagicMock(), item_kind="flag", item_id="f", action="deleted")


@pytest.mark.asyncio
async def test_write_failure_is_swallowed() -> None:
    session = MagicMock()
    session.begin_nested.side_effect = OperationalError("SAVEPOINT", {}, Exception("down"))

    entry = await record_history(session, item_kind="flag", item_id="f", action="assigned", actor=ADMIN)

    assert entry is None
