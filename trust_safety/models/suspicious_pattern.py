from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_safety.db.connection import Base, JSONType


class SuspiciousPattern(Base):
    """Latest snapshot of a detector firing for an IP.

    Admission decisions never read this table; detection is always
    recomputed from the activity ledger.
    """

    __tablename__ = "suspicious_ip_patterns"

    ip_address: Mapped[str] = mapped_column(String(45), primary_key=True)
    pattern_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)


class SuspiciousPatternRead(BaseModel):
    ip_address: str
    pattern_type: str
    severity: str
    count: int
    first_seen_at: datetime
    last_seen_at: datetime
    details: dict[str, Any]

    @classmethod
    def from_orm_model(cls, row: SuspiciousPattern) -> SuspiciousPatternRead:
        return cls(
            ip_address=row.ip_address,
            pattern_type=row.pattern_type,
            severity=row.severity,
            count=row.count,
            first_seen_at=row.first_seen_at,
            last_seen_at=row.last_seen_at,
            details=row.details or {},
        )
