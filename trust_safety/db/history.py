"""Append-only moderation/audit history.

Every admin or system mutation in the subsystem writes one row here. Writes
are best-effort: they run inside a SAVEPOINT so a failed insert is rolled
back on its own and never takes the primary mutation down with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel
from sqlalchemy import DateTime, Index, String, Text, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from trust_safety.db.connection import Base, BigIntPK, JSONType
from trust_safety.ops.events import get_correlation_id

logger = logging.getLogger(__name__)

HistoryItemKind = Literal["flag", "report", "ip_blacklist"]
VALID_ACTIONS = {
    "assigned",
    "unassigned",
    "state_changed",
    "note_added",
    "escalated",
    "merged",
    "ip_banned",
    "ip_unbanned",
}


@dataclass(frozen=True, slots=True)
class AuditActor:
    """Who performed a mutation, captured when the call was made."""

    admin_id: str | None = None
    device_id: str | None = None
    ip_address: str | None = None


SYSTEM_ACTOR = AuditActor()


class ModerationHistoryEntry(Base):
    __tablename__ = "moderation_history"
    __table_args__ = (
        Index("ix_moderation_history_item", "item_kind", "item_id", "created_at"),
        Index("ix_moderation_history_admin", "admin_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    item_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    admin_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previous_value: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )


class HistoryEntryRead(BaseModel):
    id: int
    item_kind: str
    item_id: str
    action: str
    admin_id: str | None = None
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    notes: str | None = None
    device_id: str | None = None
    ip_address: str | None = None
    correlation_id: str | None = None
    created_at: datetime

    @classmethod
    def from_orm_model(cls, row: ModerationHistoryEntry) -> HistoryEntryRead:
        return cls(
            id=row.id,
            item_kind=row.item_kind,
            item_id=row.item_id,
            action=row.action,
            admin_id=row.admin_id,
            previous_value=row.previous_value,
            new_value=row.new_value,
            notes=row.notes,
            device_id=row.device_id,
            ip_address=row.ip_address,
            correlation_id=row.correlation_id,
            created_at=row.created_at,
        )


async def record_history(
    session: AsyncSession,
    *,
    item_kind: HistoryItemKind,
    item_id: str,
    action: str,
    actor: AuditActor | None = None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    notes: str | None = None,
) -> ModerationHistoryEntry | None:
    if action not in VALID_ACTIONS:
        raise ValueError(f"Invalid history action: {action}")

    who = actor or SYSTEM_ACTOR
    entry = ModerationHistoryEntry(
        item_kind=item_kind,
        item_id=item_id,
        action=action,
        admin_id=who.admin_id,
        previous_value=previous_value,
        new_value=new_value,
        notes=notes,
        device_id=who.device_id,
        ip_address=who.ip_address,
        correlation_id=get_correlation_id(),
        created_at=datetime.now(UTC),
    )
    try:
        async with session.begin_nested():
            session.add(entry)
            await session.flush()
    except SQLAlchemyError:
        logger.warning(
            "Failed to record %s history for %s %s",
            action,
            item_kind,
            item_id,
            exc_info=True,
            extra={
                "event_type": "audit.write_failed",
                "ops_payload": {"item_kind": item_kind, "item_id": item_id, "action": action},
            },
        )
        return None
    return entry


async def list_item_history(
    session: AsyncSession, *, item_kind: HistoryItemKind, item_id: str
) -> list[ModerationHistoryEntry]:
    result = await session.execute(
        select(ModerationHistoryEntry)
        .where(ModerationHistoryEntry.item_kind == item_kind, ModerationHistoryEntry.item_id == item_id)
        .order_by(ModerationHistoryEntry.created_at.asc(), ModerationHistoryEntry.id.asc())
    )
    return list(result.scalars().all())


async def list_history(
    session: AsyncSession,
    *,
    admin_id: str | None = None,
    item_kind: HistoryItemKind | None = None,
    limit: int = 100,
) -> list[ModerationHistoryEntry]:
    query = select(ModerationHistoryEntry)
    if admin_id is not None:
        query = query.where(ModerationHistoryEntry.admin_id == admin_id)
    if item_kind is not None:
        query = query.where(ModerationHistoryEntry.item_kind == item_kind)
    result = await session.execute(
        query.order_by(ModerationHistoryEntry.created_at.desc(), ModerationHistoryEntry.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
