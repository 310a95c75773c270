"""Moderation workflow: queue, assignment, transitions, notes and escalation.

Every successful mutation writes exactly one history row, in the same
transaction as the change it describes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, Literal
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.db.history import SYSTEM_ACTOR, AuditActor, ModerationHistoryEntry, list_item_history, record_history
from trust_safety.db.store import ensure_utc, escape_like, safe_rollback, store_call
from trust_safety.errors import InvalidTransition, NotFound, StoreUnavailable
from trust_safety.handlers.notifications import notify_admins
from trust_safety.handlers.patterns import risk_bands
from trust_safety.models.moderation import (
    ALLOWED_TRANSITIONS,
    OPEN_STATES,
    BulkUpdateResult,
    ItemKind,
    ItemSource,
    ModerationItem,
    ModerationItemRead,
    ModerationQueue,
    ModerationStatistics,
    QueueFilters,
    WorkflowState,
)
from trust_safety.models.severity import Severity

logger = logging.getLogger(__name__)

SortBy = Literal["priority", "newest", "oldest"]
UNASSIGNED = "unassigned"
PRIORITY_BY_SEVERITY = {
    Severity.LOW: 25,
    Severity.MEDIUM: 50,
    Severity.HIGH: 75,
    Severity.CRITICAL: 100,
}
_SNAPSHOT_FIELDS = {
    "workflow_state",
    "assigned_to",
    "priority",
    "escalation_level",
    "risk_score",
    "reasons",
    "notes",
    "reviewed_at",
    "reviewed_by",
}
_OPEN_VALUES = [state.value for state in OPEN_STATES]


def risk_severity(risk_score: float) -> Severity:
    return risk_bands(get_settings()).classify(risk_score) or Severity.LOW


def initial_priority(risk_score: float) -> int:
    return PRIORITY_BY_SEVERITY[risk_severity(risk_score)]


def _snapshot(item: ModerationItem) -> dict[str, Any]:
    return ModerationItemRead.from_orm_model(item).model_dump(mode="json", include=_SNAPSHOT_FIELDS)


async def _load_item(session: AsyncSession, kind: ItemKind, item_id: UUID) -> ModerationItem:
    result = await session.execute(
        select(ModerationItem)
        .where(ModerationItem.id == item_id, ModerationItem.kind == kind.value)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFound(f"{kind.value} {item_id} does not exist")
    return item


async def _find_open_item(
    session: AsyncSession, kind: ItemKind, subject_resource_id: str, reporter_id: str | None = None
) -> ModerationItem | None:
    query = select(ModerationItem).where(
        ModerationItem.kind == kind.value,
        ModerationItem.subject_resource_id == subject_resource_id,
        ModerationItem.workflow_state.in_(_OPEN_VALUES),
    )
    if kind == ItemKind.REPORT:
        query = query.where(ModerationItem.reporter_id == reporter_id)
    result = await session.execute(query.order_by(ModerationItem.created_at.asc()).limit(1))
    return result.scalars().first()


async def _notify_high_risk(session: AsyncSession, item: ModerationItem) -> None:
    severity = risk_severity(item.risk_score)
    if severity.rank < Severity.HIGH.rank:
        return
    await notify_admins(
        session,
        notification_type=f"moderation_high_risk_{item.kind}",
        item_kind=item.kind,
        item_id=str(item.id),
        priority=item.priority,
        severity=severity.value,
        payload={
            "subject_resource_id": item.subject_resource_id,
            "resource_type": item.resource_type,
            "risk_score": item.risk_score,
            "reasons": list(item.reasons or []),
        },
    )


async def _enqueue(
    session: AsyncSession,
    *,
    kind: ItemKind,
    subject_resource_id: str,
    reasons: Sequence[str],
    risk_score: float,
    source: ItemSource,
    resource_type: str,
    reporter_id: str | None,
    content_text: str | None,
    actor: AuditActor | None,
) -> ModerationItem:
    if not 0.0 <= risk_score <= 10.0:
        raise ValueError("risk_score must be between 0 and 10")
    now = datetime.now(UTC)
    existing = await _find_open_item(session, kind, subject_resource_id, reporter_id)
    if existing is not None:
        previous = _snapshot(existing)
        was_high = risk_severity(existing.risk_score).rank >= Severity.HIGH.rank
        existing.reasons = list(dict.fromkeys([*(existing.reasons or []), *reasons]))
        existing.risk_score = max(existing.risk_score, risk_score)
        existing.priority = max(existing.priority, initial_priority(existing.risk_score))
        existing.content_text = existing.content_text or content_text
        existing.updated_at = now
        await session.flush()
        await record_history(
            session,
            item_kind=kind.value,
            item_id=str(existing.id),
            action="merged",
            actor=actor,
            previous_value=previous,
            new_value=_snapshot(existing),
        )
        if not was_high:
            await _notify_high_risk(session, existing)
        await session.commit()
        logger.info(
            "Merged %s into open item %s",
            kind.value,
            existing.id,
            extra={"event_type": "moderation.merged", "ops_payload": {"item_id": str(existing.id)}},
        )
        return existing

    item = ModerationItem(
        kind=kind.value,
        subject_resource_id=subject_resource_id,
        resource_type=resource_type,
        reasons=list(dict.fromkeys(reasons)),
        risk_score=risk_score,
        source=source.value,
        reporter_id=reporter_id,
        content_text=content_text,
        workflow_state=WorkflowState.PENDING.value,
        priority=initial_priority(risk_score),
        escalation_level=0,
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    await session.flush()
    await _notify_high_risk(session, item)
    await session.commit()
    logger.info(
        "Queued %s %s for %s (priority %d)",
        kind.value,
        item.id,
        subject_resource_id,
        item.priority,
        extra={
            "event_type": "moderation.enqueued",
            "ops_payload": {"kind": kind.value, "priority": item.priority, "source": source.value},
        },
    )
    return item


async def enqueue_flag(
    session: AsyncSession,
    subject_resource_id: str,
    reasons: Sequence[str],
    risk_score: float,
    source: ItemSource = ItemSource.AUTOMATED,
    *,
    resource_type: str = "clip",
    content_text: str | None = None,
    actor: AuditActor | None = None,
) -> ModerationItem:
    return await _enqueue(
        session,
        kind=ItemKind.FLAG,
        subject_resource_id=subject_resource_id,
        reasons=reasons,
        risk_score=risk_score,
        source=source,
        resource_type=resource_type,
        reporter_id=None,
        content_text=content_text,
        actor=actor,
    )


async def enqueue_report(
    session: AsyncSession,
    subject_resource_id: str,
    reasons: Sequence[str],
    reporter_id: str,
    *,
    risk_score: float = 0.0,
    resource_type: str = "clip",
    content_text: str | None = None,
    actor: AuditActor | None = None,
) -> ModerationItem:
    return await _enqueue(
        session,
        kind=ItemKind.REPORT,
        subject_resource_id=subject_resource_id,
        reasons=reasons,
        risk_score=risk_score,
        source=ItemSource.COMMUNITY,
        resource_type=resource_type,
        reporter_id=reporter_id,
        content_text=content_text,
        actor=actor,
    )


async def assign_item(
    session: AsyncSession,
    kind: ItemKind,
    item_id: UUID,
    admin_id: str | None,
    *,
    actor: AuditActor | None = None,
) -> ModerationItem:
    item = await _load_item(session, kind, item_id)
    if item.state.is_terminal:
        raise InvalidTransition(f"{kind.value} {item_id} is {item.workflow_state} and can no longer be assigned")

    previous = _snapshot(item)
    item.assigned_to = admin_id
    if admin_id and item.state == WorkflowState.PENDING:
        item.workflow_state = WorkflowState.IN_REVIEW.value
    elif admin_id is None and item.state == WorkflowState.IN_REVIEW:
        item.workflow_state = WorkflowState.PENDING.value
    item.updated_at = datetime.now(UTC)
    await session.flush()

    await record_history(
        session,
        item_kind=kind.value,
        item_id=str(item.id),
        action="assigned" if admin_id else "unassigned",
        actor=actor,
        previous_value=previous,
        new_value=_snapshot(item),
    )
    if admin_id:
        await notify_admins(
            session,
            notification_type="moderation_assigned_item",
            item_kind=kind.value,
            item_id=str(item.id),
            priority=item.priority,
            severity=risk_severity(item.risk_score).value,
            payload={"subject_resource_id": item.subject_resource_id},
            recipients=[admin_id],
        )
    await session.commit()
    return item


async def update_workflow_state(
    session: AsyncSession,
    kind: ItemKind,
    item_id: UUID,
    new_state: WorkflowState,
    *,
    actor: AuditActor | None = None,
    notes: str | None = None,
) -> ModerationItem:
    item = await _load_item(session, kind, item_id)
    current = item.state
    if new_state not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"cannot move {kind.value} {item_id} from {current.value} to {new_state.value}")

    who = actor or SYSTEM_ACTOR
    now = datetime.now(UTC)
    previous = _snapshot(item)
    changes: dict[str, Any] = {"workflow_state": new_state.value, "updated_at": now}
    if new_state == WorkflowState.IN_REVIEW and item.assigned_to is None:
        changes["assigned_to"] = who.admin_id
    elif new_state == WorkflowState.PENDING:
        changes["assigned_to"] = None
    elif new_state.is_terminal:
        changes["reviewed_at"] = now
        changes["reviewed_by"] = who.admin_id
    if notes is not None:
        changes["notes"] = notes

    # Compare-and-set on the state read above.
    try:
        async with store_call("workflow state update"):
            outcome = await session.execute(
                update(ModerationItem)
                .where(ModerationItem.id == item.id, ModerationItem.workflow_state == current.value)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if not outcome.rowcount:
                raise InvalidTransition(f"{kind.value} {item_id} left {current.value} concurrently")
            item = await _load_item(session, kind, item_id)
            await record_history(
                session,
                item_kind=kind.value,
                item_id=str(item.id),
                action="state_changed",
                actor=who,
                previous_value=previous,
                new_value=_snapshot(item),
                notes=notes,
            )
            await session.commit()
    except StoreUnavailable:
        await safe_rollback(session)
        raise
    logger.info(
        "%s %s moved %s -> %s",
        kind.value,
        item_id,
        current.value,
        new_state.value,
        extra={
            "event_type": "moderation.state_changed",
            "ops_payload": {"kind": kind.value, "from": current.value, "to": new_state.value},
        },
    )
    return item


async def bulk_update(
    session: AsyncSession,
    kind: ItemKind,
    item_ids: Iterable[UUID],
    new_state: WorkflowState,
    *,
    actor: AuditActor | None = None,
) -> BulkUpdateResult:
    outcome = BulkUpdateResult()
    for item_id in dict.fromkeys(item_ids):
        try:
            await update_workflow_state(session, kind, item_id, new_state, actor=actor)
        except (NotFound, InvalidTransition) as exc:
            outcome.skipped[str(item_id)] = exc.message
            continue
        outcome.updated.append(item_id)
    return outcome


async def add_note(
    session: AsyncSession,
    kind: ItemKind,
    item_id: UUID,
    note: str,
    *,
    actor: AuditActor | None = None,
) -> ModerationItem:
    item = await _load_item(session, kind, item_id)
    previous_note = item.notes
    item.notes = note
    item.updated_at = datetime.now(UTC)
    await session.flush()
    await record_history(
        session,
        item_kind=kind.value,
        item_id=str(item.id),
        action="note_added",
        actor=actor,
        previous_value={"notes": previous_note},
        new_value={"notes": note},
        notes=note,
    )
    await session.commit()
    return item


async def escalate_stale_items(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Bump open items that have aged past each multiple of the escalation age.

    Each bump is a compare-and-set on ``escalation_level`` so overlapping
    sweeps never escalate the same level twice.
    """
    settings = get_settings()
    if settings.escalation_age_hours <= 0:
        return 0
    current = now or datetime.now(UTC)
    threshold = timedelta(hours=settings.escalation_age_hours)

    # Column rows: the compare-and-set must use the level as read here.
    result = await session.execute(
        select(
            ModerationItem.id,
            ModerationItem.kind,
            ModerationItem.created_at,
            ModerationItem.escalation_level,
            ModerationItem.priority,
            ModerationItem.risk_score,
            ModerationItem.assigned_to,
        )
        .where(
            ModerationItem.workflow_state.in_(_OPEN_VALUES),
            ModerationItem.created_at <= current - threshold,
        )
        .order_by(ModerationItem.created_at.asc())
    )
    escalated = 0
    for item in result.all():
        level = int((current - ensure_utc(item.created_at)) / threshold)
        seen = item.escalation_level
        if level <= seen:
            continue
        steps = level - seen
        previous = {"priority": item.priority, "escalation_level": seen, "risk_score": item.risk_score}
        bumped = {
            "priority": max(
                item.priority,
                min(settings.escalation_priority_cap, item.priority + settings.escalation_priority_step * steps),
            ),
            "escalation_level": level,
            "risk_score": min(10.0, item.risk_score + settings.escalation_risk_step * steps),
        }
        outcome = await session.execute(
            update(ModerationItem)
            .where(ModerationItem.id == item.id, ModerationItem.escalation_level == seen)
            .values(**bumped, updated_at=current)
        )
        if not outcome.rowcount:
            continue
        await record_history(
            session,
            item_kind=item.kind,
            item_id=str(item.id),
            action="escalated",
            actor=SYSTEM_ACTOR,
            previous_value=previous,
            new_value=bumped,
        )
        # The assignee when there is one, otherwise every admin.
        await notify_admins(
            session,
            notification_type="moderation_escalated_item",
            item_kind=item.kind,
            item_id=str(item.id),
            priority=bumped["priority"],
            severity=risk_severity(bumped["risk_score"]).value,
            payload={"escalation_level": level},
            recipients=[item.assigned_to] if item.assigned_to else None,
        )
        await session.commit()
        escalated += 1

    if escalated:
        logger.info(
            "Escalated %d stale moderation item(s)",
            escalated,
            extra={"event_type": "moderation.escalated", "ops_payload": {"count": escalated}},
        )
    return escalated


def _apply_filters(query: Any, filters: QueueFilters) -> Any:
    if filters.risk_band is not None:
        lower, upper = risk_bands(get_settings()).band_range(filters.risk_band)
        query = query.where(ModerationItem.risk_score >= lower)
        if upper is not None:
            query = query.where(ModerationItem.risk_score < upper)
    if filters.source is not None:
        query = query.where(ModerationItem.source == filters.source.value)
    if filters.assigned_to == UNASSIGNED:
        query = query.where(ModerationItem.assigned_to.is_(None))
    elif filters.assigned_to:
        query = query.where(ModerationItem.assigned_to == filters.assigned_to)
    if filters.workflow_state is not None:
        query = query.where(ModerationItem.workflow_state == filters.workflow_state.value)
    else:
        query = query.where(ModerationItem.workflow_state.in_(_OPEN_VALUES))
    if filters.search:
        pattern = f"%{escape_like(filters.search.strip())}%"
        query = query.where(
            or_(
                ModerationItem.content_text.ilike(pattern, escape="\\"),
                ModerationItem.subject_resource_id.ilike(pattern, escape="\\"),
                ModerationItem.notes.ilike(pattern, escape="\\"),
            )
        )
    return query


def _apply_sort(query: Any, sort_by: SortBy) -> Any:
    if sort_by == "priority":
        return query.order_by(ModerationItem.priority.desc(), ModerationItem.created_at.asc(), ModerationItem.id)
    if sort_by == "newest":
        return query.order_by(ModerationItem.created_at.desc(), ModerationItem.id)
    if sort_by == "oldest":
        return query.order_by(ModerationItem.created_at.asc(), ModerationItem.id)
    raise ValueError(f"Unsupported sort: {sort_by}")


async def list_moderation_queue(
    session: AsyncSession,
    sort_by: SortBy = "priority",
    filters: QueueFilters | None = None,
) -> ModerationQueue:
    active = filters or QueueFilters()
    kinds = [active.kind] if active.kind is not None else [ItemKind.FLAG, ItemKind.REPORT]
    queue = ModerationQueue()
    for kind in kinds:
        query = _apply_filters(select(ModerationItem).where(ModerationItem.kind == kind.value), active)
        result = await session.execute(
            _apply_sort(query, sort_by).limit(active.limit).execution_options(populate_existing=True)
        )
        rows = [ModerationItemRead.from_orm_model(item) for item in result.scalars().all()]
        if kind == ItemKind.FLAG:
            queue.flags = rows
        else:
            queue.reports = rows
    return queue


async def get_moderation_history(
    session: AsyncSession, kind: ItemKind, item_id: UUID
) -> list[ModerationHistoryEntry]:
    await _load_item(session, kind, item_id)
    return await list_item_history(session, item_kind=kind.value, item_id=str(item_id))


async def _count(session: AsyncSession, *conditions: Any) -> int:
    result = await session.execute(select(func.count(ModerationItem.id)).where(*conditions))
    return int(result.scalar_one())


async def get_moderation_statistics(
    session: AsyncSession,
    *,
    since: datetime | None = None,
    now: datetime | None = None,
) -> ModerationStatistics:
    settings = get_settings()
    current = now or datetime.now(UTC)
    period_start = since or current - timedelta(days=7)
    day_start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    open_condition = ModerationItem.workflow_state.in_(_OPEN_VALUES)

    reviewed = await session.execute(
        select(ModerationItem.created_at, ModerationItem.reviewed_at).where(
            ModerationItem.reviewed_at.is_not(None), ModerationItem.reviewed_at >= period_start
        )
    )
    durations = [
        (ensure_utc(reviewed_at) - ensure_utc(created_at)).total_seconds() / 60
        for created_at, reviewed_at in reviewed.all()
    ]

    by_source = await session.execute(
        select(ModerationItem.source, func.count(ModerationItem.id))
        .where(ModerationItem.kind == ItemKind.FLAG.value)
        .group_by(ModerationItem.source)
    )
    by_state = await session.execute(
        select(ModerationItem.workflow_state, func.count(ModerationItem.id))
        .where(open_condition)
        .group_by(ModerationItem.workflow_state)
    )

    return ModerationStatistics(
        items_reviewed_today=await _count(session, ModerationItem.reviewed_at >= day_start),
        items_reviewed_period=len(durations),
        avg_minutes_to_review=round(sum(durations) / len(durations), 2) if durations else 0.0,
        high_risk_open=await _count(session, open_condition, ModerationItem.risk_score >= settings.risk_band_high),
        open_older_than_threshold=await _count(
            session,
            open_condition,
            ModerationItem.created_at <= current - timedelta(hours=settings.escalation_age_hours),
        ),
        flags_by_source={source: int(count) for source, count in by_source.all()},
        open_by_state={state: int(count) for state, count in by_state.all()},
        details={"since": period_start.isoformat(), "escalation_age_hours": settings.escalation_age_hours},
    )

