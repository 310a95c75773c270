"""Suspicious-pattern detectors over the activity ledger.

Detection is recomputed from raw activity on every call. Each detector is a
small strategy object so deployments can swap in running aggregates without
touching the callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import Settings
from trust_safety.db.activity_log import ActivityRecord
from trust_safety.handlers.activity import ACCOUNT_CREATION
from trust_safety.models.severity import Severity, SeverityBands


class PatternMatch(BaseModel):
    pattern_type: str
    severity: Severity
    count: int


class PatternDetector(Protocol):
    pattern_type: str

    async def detect(
        self,
        session: AsyncSession,
        *,
        ip_address: str,
        action_type: str,
        since: datetime,
    ) -> PatternMatch | None: ...


def _match(pattern_type: str, bands: SeverityBands, count: int) -> PatternMatch | None:
    severity = bands.classify(count)
    if severity is None:
        return None
    return PatternMatch(pattern_type=pattern_type, severity=severity, count=count)


@dataclass(frozen=True)
class RapidActionsDetector:
    """One IP repeating a single action type far beyond normal behaviour."""

    bands: SeverityBands
    pattern_type: str = "rapid_actions"

    async def detect(
        self, session: AsyncSession, *, ip_address: str, action_type: str, since: datetime
    ) -> PatternMatch | None:
        result = await session.execute(
            select(func.count(ActivityRecord.id)).where(
                ActivityRecord.ip_address == ip_address,
                ActivityRecord.action_type == action_type,
                ActivityRecord.created_at > since,
            )
        )
        return _match(self.pattern_type, self.bands, int(result.scalar_one()))


@dataclass(frozen=True)
class MultipleAccountsDetector:
    """Many profiles created from one IP in the window."""

    bands: SeverityBands
    pattern_type: str = "multiple_accounts"

    async def detect(
        self, session: AsyncSession, *, ip_address: str, action_type: str, since: datetime
    ) -> PatternMatch | None:
        result = await session.execute(
            select(func.count(distinct(ActivityRecord.profile_id))).where(
                ActivityRecord.ip_address == ip_address,
                ActivityRecord.action_type == ACCOUNT_CREATION,
                ActivityRecord.profile_id.is_not(None),
                ActivityRecord.created_at > since,
            )
        )
        return _match(self.pattern_type, self.bands, int(result.scalar_one()))


@dataclass(frozen=True)
class CoordinatedProfilesDetector:
    """Many distinct profiles performing the same action from one IP."""

    bands: SeverityBands
    pattern_type: str = "coordinated_profiles"

    async def detect(
        self, session: AsyncSession, *, ip_address: str, action_type: str, since: datetime
    ) -> PatternMatch | None:
        if action_type == ACCOUNT_CREATION:
            return None
        result = await session.execute(
            select(func.count(distinct(ActivityRecord.profile_id))).where(
                ActivityRecord.ip_address == ip_address,
                ActivityRecord.action_type == action_type,
                ActivityRecord.profile_id.is_not(None),
                ActivityRecord.created_at > since,
            )
        )
        return _match(self.pattern_type, self.bands, int(result.scalar_one()))


def default_detectors(settings: Settings) -> list[PatternDetector]:
    return [
        RapidActionsDetector(
            SeverityBands(
                low=None,
                medium=settings.rapid_actions_medium,
                high=settings.rapid_actions_high,
                critical=settings.rapid_actions_critical,
            )
        ),
        MultipleAccountsDetector(
            SeverityBands(
                low=None,
                medium=settings.multiple_accounts_medium,
                high=settings.multiple_accounts_high,
                critical=settings.multiple_accounts_critical,
            )
        ),
        CoordinatedProfilesDetector(
            SeverityBands(
                low=settings.coordinated_profiles_low,
                medium=settings.coordinated_profiles_medium,
                high=settings.coordinated_profiles_high,
                critical=settings.coordinated_profiles_critical,
            )
        ),
    ]


def risk_bands(settings: Settings) -> SeverityBands:
    return SeverityBands(
        low=0.0,
        medium=settings.risk_band_medium,
        high=settings.risk_band_high,
        critical=settings.risk_band_critical,
    )
