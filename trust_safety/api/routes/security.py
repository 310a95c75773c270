from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.api.authn import AdminContext, require_admin
from trust_safety.db.connection import get_db
from trust_safety.db.history import HistoryEntryRead, list_history
from trust_safety.handlers import ip_reputation
from trust_safety.models.blacklist import IPBlacklistCreate, IPBlacklistRead
from trust_safety.models.severity import Severity
from trust_safety.models.suspicious_pattern import SuspiciousPatternRead

router = APIRouter()


@router.get("/blacklist", response_model=list[IPBlacklistRead])
async def blacklist(
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    active_only: bool = Query(True),
    limit: int = Query(200, ge=1, le=1000),
) -> list[IPBlacklistRead]:
    rows = await ip_reputation.list_blacklist(session, active_only=active_only, limit=limit)
    return [IPBlacklistRead.from_orm_model(row) for row in rows]


@router.post("/blacklist", response_model=IPBlacklistRead, status_code=201)
async def ban_ip(
    body: IPBlacklistCreate,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> IPBlacklistRead:
    entry = await ip_reputation.blacklist_ip(
        session,
        body.ip_address,
        reason=body.reason,
        banned_by=admin.profile_id,
        expires_at=body.expires_at,
        actor=admin.actor,
    )
    return IPBlacklistRead.from_orm_model(entry)


@router.delete("/blacklist/{ip_address}")
async def unban_ip(
    ip_address: str,
    admin: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    return {"unbanned": await ip_reputation.unblacklist_ip(session, ip_address, actor=admin.actor)}


@router.get("/patterns", response_model=list[SuspiciousPatternRead])
async def patterns(
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    min_severity: Severity | None = Query(default=None),
    limit: int = Query(100, ge=1, le=500),
) -> list[SuspiciousPatternRead]:
    rows = await ip_reputation.list_suspicious_patterns(session, min_severity=min_severity, limit=limit)
    return [SuspiciousPatternRead.from_orm_model(row) for row in rows]


@router.get("/audit", response_model=list[HistoryEntryRead])
async def audit(
    _: Annotated[AdminContext, Depends(require_admin)],
    session: AsyncSession = Depends(get_db),
    admin_id: str | None = Query(default=None),
    item_kind: Literal["flag", "report", "ip_blacklist"] | None = Query(default=None),
    limit: int = Query(100, ge=1, le=500),
) -> list[HistoryEntryRead]:
    rows = await list_history(session, admin_id=admin_id, item_kind=item_kind, limit=limit)
    return [HistoryEntryRead.from_orm_model(row) for row in rows]
