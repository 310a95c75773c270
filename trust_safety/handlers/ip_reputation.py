from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.db.history import AuditActor, record_history
from trust_safety.db.store import ensure_utc, safe_rollback, store_call
from trust_safety.errors import NotFound, StoreUnavailable
from trust_safety.handlers.patterns import PatternDetector, PatternMatch, default_detectors
from trust_safety.models.blacklist import IPBlacklistEntry
from trust_safety.models.severity import Severity
from trust_safety.models.suspicious_pattern import SuspiciousPattern

logger = logging.getLogger(__name__)


class PatternResult(BaseModel):
    is_suspicious: bool
    pattern_type: str | None = None
    severity: Severity | None = None
    count: int = 0
    degraded: bool = False

    @property
    def blocks(self) -> bool:
        return self.severity == Severity.CRITICAL


async def is_ip_blacklisted(session: AsyncSession, ip_address: str | None, *, now: datetime | None = None) -> bool:
    if not ip_address:
        return False
    current = now or datetime.now(UTC)
    try:
        async with store_call("blacklist lookup"):
            result = await session.execute(
                select(
                    exists().where(
                        IPBlacklistEntry.ip_address == ip_address,
                        IPBlacklistEntry.is_active.is_(True),
                        or_(IPBlacklistEntry.expires_at.is_(None), IPBlacklistEntry.expires_at > current),
                    )
                )
            )
            return bool(result.scalar())
    except StoreUnavailable as exc:
        await safe_rollback(session)
        logger.warning(
            "Blacklist lookup failed for %s, allowing: %s",
            ip_address,
            exc.message,
            extra={"event_type": "blacklist.fail_open", "ops_payload": {"ip_address": ip_address}},
        )
        return False


async def get_blacklist_entry(session: AsyncSession, ip_address: str) -> IPBlacklistEntry | None:
    result = await session.execute(select(IPBlacklistEntry).where(IPBlacklistEntry.ip_address == ip_address))
    return result.scalar_one_or_none()


async def blacklist_ip(
    session: AsyncSession,
    ip_address: str,
    *,
    reason: str | None,
    banned_by: str,
    expires_at: datetime | None = None,
    actor: AuditActor | None = None,
) -> IPBlacklistEntry:
    """Ban an IP, re-activating and refreshing any existing entry."""
    expiry = ensure_utc(expires_at) if expires_at is not None else None
    async with store_call("blacklist write"):
        entry = await get_blacklist_entry(session, ip_address)
        previous = entry.snapshot() if entry is not None else None
        if entry is None:
            entry = IPBlacklistEntry(
                ip_address=ip_address,
                reason=reason,
                banned_by=banned_by,
                expires_at=expiry,
                is_active=True,
                banned_at=datetime.now(UTC),
            )
            session.add(entry)
        else:
            entry.reason = reason if reason is not None else entry.reason
            if expiry is not None:
                entry.expires_at = expiry
            elif entry.expires_at is not None and ensure_utc(entry.expires_at) <= datetime.now(UTC):
                # Only a still-pending expiry carries over to the renewed ban.
                entry.expires_at = None
            entry.banned_by = banned_by
            entry.is_active = True
            entry.banned_at = datetime.now(UTC)
        await session.flush()
        await record_history(
            session,
            item_kind="ip_blacklist",
            item_id=ip_address,
            action="ip_banned",
            actor=actor or AuditActor(admin_id=banned_by),
            previous_value=previous,
            new_value=entry.snapshot(),
            notes=reason,
        )
        await session.commit()
    logger.info(
        "IP %s banned by %s",
        ip_address,
        banned_by,
        extra={"event_type": "blacklist.banned", "ops_payload": {"ip_address": ip_address}},
    )
    return entry


async def unblacklist_ip(
    session: AsyncSession,
    ip_address: str,
    *,
    actor: AuditActor | None = None,
) -> bool:
    async with store_call("blacklist write"):
        entry = await get_blacklist_entry(session, ip_address)
        if entry is None or not entry.is_active:
            raise NotFound(f"no active ban for {ip_address}")
        previous = entry.snapshot()
        entry.is_active = False
        await session.flush()
        await record_history(
            session,
            item_kind="ip_blacklist",
            item_id=ip_address,
            action="ip_unbanned",
            actor=actor,
            previous_value=previous,
            new_value=entry.snapshot(),
        )
        await session.commit()
    logger.info(
        "IP %s unbanned",
        ip_address,
        extra={"event_type": "blacklist.unbanned", "ops_payload": {"ip_address": ip_address}},
    )
    return True


async def list_blacklist(session: AsyncSession, *, active_only: bool = True, limit: int = 200) -> list[IPBlacklistEntry]:
    query = select(IPBlacklistEntry)
    if active_only:
        query = query.where(IPBlacklistEntry.is_active.is_(True))
    result = await session.execute(query.order_by(IPBlacklistEntry.banned_at.desc()).limit(limit))
    return list(result.scalars().all())


async def _snapshot_patterns(
    session: AsyncSession,
    *,
    ip_address: str,
    action_type: str,
    window_minutes: int,
    matches: Sequence[PatternMatch],
    now: datetime,
) -> None:
    try:
        async with store_call("pattern snapshot"):
            for match in matches:
                row = await session.get(SuspiciousPattern, (ip_address, match.pattern_type))
                details = {"action_type": action_type, "time_window_minutes": window_minutes}
                if row is None:
                    session.add(
                        SuspiciousPattern(
                            ip_address=ip_address,
                            pattern_type=match.pattern_type,
                            severity=match.severity.value,
                            count=match.count,
                            first_seen_at=now,
                            last_seen_at=now,
                            details=details,
                        )
                    )
                else:
                    row.severity = match.severity.value
                    row.count = match.count
                    row.last_seen_at = now
                    row.details = details
            await session.commit()
    except StoreUnavailable:
        await safe_rollback(session)
        logger.warning(
            "Could not snapshot suspicious patterns for %s",
            ip_address,
            exc_info=True,
            extra={"event_type": "patterns.snapshot_failed"},
        )


async def detect_suspicious_ip_pattern(
    session: AsyncSession,
    ip_address: str | None,
    action_type: str,
    window_minutes: int | None = None,
    *,
    detectors: Sequence[PatternDetector] | None = None,
    now: datetime | None = None,
) -> PatternResult:
    if not ip_address:
        return PatternResult(is_suspicious=False)
    settings = get_settings()
    window = settings.pattern_window_minutes if window_minutes is None else window_minutes
    active = default_detectors(settings) if detectors is None else detectors
    current = now or datetime.now(UTC)
    since = current - timedelta(minutes=window)

    matches: list[PatternMatch] = []
    try:
        async with store_call("pattern detection"):
            for detector in active:
                match = await detector.detect(session, ip_address=ip_address, action_type=action_type, since=since)
                if match is not None:
                    matches.append(match)
    except StoreUnavailable as exc:
        await safe_rollback(session)
        logger.warning(
            "Pattern detection unavailable for %s, treating as clean: %s",
            ip_address,
            exc.message,
            extra={"event_type": "patterns.fail_open", "ops_payload": {"ip_address": ip_address}},
        )
        return PatternResult(is_suspicious=False, degraded=True)

    if not matches:
        return PatternResult(is_suspicious=False)

    worst = max(matches, key=lambda match: match.severity.rank)
    logger.warning(
        "Suspicious %s pattern from %s (%s, count=%d)",
        worst.pattern_type,
        ip_address,
        worst.severity.value,
        worst.count,
        extra={
            "event_type": "patterns.detected",
            "ops_payload": {
                "ip_address": ip_address,
                "pattern_type": worst.pattern_type,
                "severity": worst.severity.value,
                "count": worst.count,
            },
        },
    )
    await _snapshot_patterns(
        session,
        ip_address=ip_address,
        action_type=action_type,
        window_minutes=window,
        matches=matches,
        now=current,
    )
    return PatternResult(
        is_suspicious=True,
        pattern_type=worst.pattern_type,
        severity=worst.severity,
        count=worst.count,
    )


async def list_suspicious_patterns(
    session: AsyncSession,
    *,
    min_severity: Severity | None = None,
    limit: int = 100,
) -> list[SuspiciousPattern]:
    query = select(SuspiciousPattern)
    if min_severity is not None:
        allowed = [severity.value for severity in Severity if severity.rank >= min_severity.rank]
        query = query.where(SuspiciousPattern.severity.in_(allowed))
    result = await session.execute(query.order_by(SuspiciousPattern.last_seen_at.desc()).limit(limit))
    return list(result.scalars().all())
