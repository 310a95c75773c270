from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_safety.db.connection import Base, BigIntPK


class ReputationAction(Base):
    __tablename__ = "reputation_action_log"
    __table_args__ = (
        Index(
            "ix_reputation_action_log_pair",
            "profile_id",
            "source_profile_id",
            "action_type",
            "created_at",
        ),
        Index("ix_reputation_action_log_profile_created_at", "profile_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source_profile_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
