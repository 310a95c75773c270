from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.api.authn import AdminContext, require_admin
from trust_safety.db.connection import get_db
from trust_safety.db.history import HistoryEntryRead
from trust_safety.handlers import moderation
from trust_safety.handlers.moderation import SortBy
from trust_safety.handlers.notifications import list_notifications, mark_notifications_read
from trust_safety.models.moderation import (
    BulkUpdateResult,
    FlagCreate,
    ItemKind,
    ItemSource,
    ModerationItemRead,
    ModerationQueue,
    ModerationStatistics,
    QueueFilters,
    ReportCreate,
    WorkflowState,
)
from trust_safety.models.severity import Severity

router = APIRouter()


class AssignRequest(BaseModel):
    admin_id: str | None = Field(default=None, max_length=64)


class StateChangeRequest(BaseModel):
    state: WorkflowState
    notes: str | None = Field(default=None, max_length=5000)


class NoteRequest(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


class BulkUpdateRequest(BaseModel):
    item_ids: list[UUID] = Field(min_length=1, max_length=200)
    state: WorkflowState


class NotificationReadRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1, max_length=200)


@router.get("/queue", response_model=ModerationQueue)
async def queue(
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    sort_by: SortBy = Query("priority"),
    kind: ItemKind | None = Query(default=None),
    risk_band: Severity | None = Query(default=None),
    source: ItemSource | None = Query(default=None),
    assigned_to: str | None = Query(default=None),
    workflow_state: WorkflowState | None = Query(default=None, alias="state"),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(100, ge=1, le=500),
) -> ModerationQueue:
    filters = QueueFilters(
        kind=kind,
        risk_band=risk_band,
        source=source,
        assigned_to=assigned_to,
        workflow_state=workflow_state,
        search=search,
        limit=limit,
    )
    return await moderation.list_moderation_queue(session, sort_by=sort_by, filters=filters)


@router.post("/flags", response_model=ModerationItemRead, status_code=201)
async def create_flag(body: FlagCreate, session: AsyncSession = Depends(get_db)) -> ModerationItemRead:
    item = await moderation.enqueue_flag(
        session,
        body.subject_resource_id,
        body.reasons,
        body.risk_score,
        body.source,
        resource_type=body.resource_type,
        content_text=body.content_text,
    )
    return item.to_schema()


@router.post("/reports", response_model=ModerationItemRead, status_code=201)
async def create_report(body: ReportCreate, session: AsyncSession = Depends(get_db)) -> ModerationItemRead:
    item = await moderation.enqueue_report(
        session,
        body.subject_resource_id,
        body.reasons,
        body.reporter_id,
        risk_score=body.risk_score,
        resource_type=body.resource_type,
        content_text=body.content_text,
    )
    return item.to_schema()


@router.get("/stats", response_model=ModerationStatistics)
async def stats(
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    since: datetime | None = Query(default=None),
) -> ModerationStatistics:
    return await moderation.get_moderation_statistics(session, since=since)


@router.get("/notifications")
async def notifications(
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    unread_only: bool = Query(True),
) -> list[dict[str, Any]]:
    rows = await list_notifications(session, admin.profile_id, unread_only=unread_only)
    return [
        {
            "id": str(row.id),
            "type": row.type,
            "item_kind": row.item_kind,
            "item_id": row.item_id,
            "priority": row.priority,
            "severity": row.severity,
            "payload": row.payload,
            "created_at": row.created_at.isoformat(),
        }
        for row in rows
    ]


@router.post("/notifications/read")
async def read_notifications(
    body: NotificationReadRequest,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> dict[str, int]:
    marked = await mark_notifications_read(session, admin.profile_id, body.ids)
    return {"marked": marked}


@router.post("/{kind}/bulk", response_model=BulkUpdateResult)
async def bulk(
    kind: ItemKind,
    body: BulkUpdateRequest,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> BulkUpdateResult:
    return await moderation.bulk_update(session, kind, body.item_ids, body.state, actor=admin.actor)


@router.post("/{kind}/{item_id}/assign", response_model=ModerationItemRead)
async def assign(
    kind: ItemKind,
    item_id: UUID,
    body: AssignRequest,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> ModerationItemRead:
    item = await moderation.assign_item(session, kind, item_id, body.admin_id, actor=admin.actor)
    return item.to_schema()


@router.post("/{kind}/{item_id}/state", response_model=ModerationItemRead)
async def change_state(
    kind: ItemKind,
    item_id: UUID,
    body: StateChangeRequest,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> ModerationItemRead:
    item = await moderation.update_workflow_state(
        session, kind, item_id, body.state, actor=admin.actor, notes=body.notes
    )
    return item.to_schema()


@router.post("/{kind}/{item_id}/notes", response_model=ModerationItemRead)
async def add_note(
    kind: ItemKind,
    item_id: UUID,
    body: NoteRequest,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> ModerationItemRead:
    item = await moderation.add_note(session, kind, item_id, body.note, actor=admin.actor)
    return item.to_schema()


@router.get("/{kind}/{item_id}/history", response_model=list[HistoryEntryRead])
async def history(
    kind: ItemKind,
    item_id: UUID,
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> list[HistoryEntryRead]:
    rows = await moderation.get_moderation_history(session, kind, item_id)
    return [HistoryEntryRead.from_orm_model(row) for row in rows]
