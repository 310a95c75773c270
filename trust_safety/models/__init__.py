from trust_safety.models.blacklist import IPBlacklistCreate, IPBlacklistEntry, IPBlacklistRead
from trust_safety.models.moderation import (
    BulkUpdateResult,
    FlagCreate,
    ItemKind,
    ItemSource,
    ModerationItem,
    ModerationItemRead,
    ModerationQueue,
    ModerationStatistics,
    QueueFilters,
    ReportCreate,
    WorkflowState,
)
from trust_safety.models.notification import AdminNotification
from trust_safety.models.severity import Severity, SeverityBands
from trust_safety.models.suspicious_pattern import SuspiciousPattern, SuspiciousPatternRead

__all__ = [
    "IPBlacklistEntry",
    "IPBlacklistCreate",
    "IPBlacklistRead",
    "ModerationItem",
    "ModerationItemRead",
    "FlagCreate",
    "ReportCreate",
    "ItemKind",
    "ItemSource",
    "WorkflowState",
    "QueueFilters",
    "ModerationQueue",
    "BulkUpdateResult",
    "ModerationStatistics",
    "AdminNotification",
    "Severity",
    "SeverityBands",
    "SuspiciousPattern",
    "SuspiciousPatternRead",
]
