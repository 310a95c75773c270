from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trust_safety.db.connection import Base, JSONType
from trust_safety.models.severity import Severity


class ItemKind(StrEnum):
    FLAG = "flag"
    REPORT = "report"


class ItemSource(StrEnum):
    AUTOMATED = "automated"
    COMMUNITY = "community"


class WorkflowState(StrEnum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    ACTIONED = "actioned"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({WorkflowState.RESOLVED, WorkflowState.ACTIONED})
OPEN_STATES = frozenset({WorkflowState.PENDING, WorkflowState.IN_REVIEW})
ALLOWED_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.PENDING: frozenset(
        {WorkflowState.IN_REVIEW, WorkflowState.RESOLVED, WorkflowState.ACTIONED}
    ),
    WorkflowState.IN_REVIEW: frozenset(
        {WorkflowState.PENDING, WorkflowState.RESOLVED, WorkflowState.ACTIONED}
    ),
    WorkflowState.RESOLVED: frozenset(),
    WorkflowState.ACTIONED: frozenset(),
}


class ModerationItem(Base):
    """A flag or a report; both kinds share one workflow."""

    __tablename__ = "moderation_items"
    __table_args__ = (
        Index("ix_moderation_items_kind_state_created_at", "kind", "workflow_state", "created_at"),
        Index("ix_moderation_items_priority", "priority", "created_at"),
        Index("ix_moderation_items_subject", "kind", "subject_resource_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False, default="clip")
    reasons: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default=ItemSource.AUTOMATED)
    reporter_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=WorkflowState.PENDING, index=True
    )
    assigned_to: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    @property
    def state(self) -> WorkflowState:
        return WorkflowState(self.workflow_state)

    def to_schema(self) -> ModerationItemRead:
        return ModerationItemRead.from_orm_model(self)


class FlagCreate(BaseModel):
    subject_resource_id: str = Field(min_length=1, max_length=64)
    resource_type: str = Field(default="clip", max_length=32)
    reasons: list[str] = Field(default_factory=list)
    risk_score: float = Field(default=0.0, ge=0.0, le=10.0)
    source: ItemSource = ItemSource.AUTOMATED
    content_text: str | None = None


class ReportCreate(BaseModel):
    subject_resource_id: str = Field(min_length=1, max_length=64)
    resource_type: str = Field(default="clip", max_length=32)
    reasons: list[str] = Field(min_length=1)
    reporter_id: str = Field(min_length=1, max_length=64)
    risk_score: float = Field(default=0.0, ge=0.0, le=10.0)
    content_text: str | None = None


class ModerationItemRead(BaseModel):
    id: UUID
    kind: ItemKind
    subject_resource_id: str
    resource_type: str
    reasons: list[str]
    risk_score: float
    source: ItemSource
    reporter_id: str | None = None
    content_text: str | None = None
    workflow_state: WorkflowState
    assigned_to: str | None = None
    priority: int
    escalation_level: int
    notes: str | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_orm_model(cls, item: ModerationItem) -> ModerationItemRead:
        return cls(
            id=item.id,
            kind=ItemKind(item.kind),
            subject_resource_id=item.subject_resource_id,
            resource_type=item.resource_type,
            reasons=list(item.reasons or []),
            risk_score=item.risk_score,
            source=ItemSource(item.source),
            reporter_id=item.reporter_id,
            content_text=item.content_text,
            workflow_state=WorkflowState(item.workflow_state),
            assigned_to=item.assigned_to,
            priority=item.priority,
            escalation_level=item.escalation_level,
            notes=item.notes,
            reviewed_at=item.reviewed_at,
            reviewed_by=item.reviewed_by,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class QueueFilters(BaseModel):
    kind: ItemKind | None = None
    risk_band: Severity | None = None
    source: ItemSource | None = None
    assigned_to: str | None = None
    workflow_state: WorkflowState | None = None
    search: str | None = Field(default=None, max_length=200)
    limit: int = Field(default=100, ge=1, le=500)


class ModerationQueue(BaseModel):
    flags: list[ModerationItemRead] = Field(default_factory=list)
    reports: list[ModerationItemRead] = Field(default_factory=list)


class BulkUpdateResult(BaseModel):
    updated: list[UUID] = Field(default_factory=list)
    skipped: dict[str, str] = Field(default_factory=dict)


class ModerationStatistics(BaseModel):
    items_reviewed_today: int
    items_reviewed_period: int
    avg_minutes_to_review: float
    high_risk_open: int
    open_older_than_threshold: int
    flags_by_source: dict[str, int]
    open_by_state: dict[str, int]
    details: dict[str, Any] = Field(default_factory=dict)
