from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import Boolean, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trust_safety.db.connection import Base


class IPBlacklistEntry(Base):
    __tablename__ = "ip_blacklist"
    __table_args__ = (Index("ix_ip_blacklist_active_expires", "is_active", "expires_at"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ip_address: Mapped[str] = mapped_column(String(45), unique=True, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    banned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    banned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    # NULL means the ban never expires.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def snapshot(self) -> dict[str, str | bool | None]:
        return {
            "ip_address": self.ip_address,
            "reason": self.reason,
            "banned_by": self.banned_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
        }


class IPBlacklistCreate(BaseModel):
    ip_address: str = Field(min_length=2, max_length=45)
    reason: str | None = Field(default=None, max_length=1000)
    expires_at: datetime | None = None


class IPBlacklistRead(BaseModel):
    id: UUID
    ip_address: str
    reason: str | None
    banned_by: str | None
    banned_at: datetime
    expires_at: datetime | None
    is_active: bool

    @classmethod
    def from_orm_model(cls, row: IPBlacklistEntry) -> IPBlacklistRead:
        return cls(
            id=row.id,
            ip_address=row.ip_address,
            reason=row.reason,
            banned_by=row.banned_by,
            banned_at=row.banned_at,
            expires_at=row.expires_at,
            is_active=row.is_active,
        )
