from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3, Severity.CRITICAL: 4}


@dataclass(frozen=True, slots=True)
class SeverityBands:
    """Inclusive lower bounds per severity; ``None`` leaves a band unused."""

    low: float | None
    medium: float | None
    high: float | None
    critical: float | None

    def _bounds(self) -> list[tuple[Severity, float]]:
        pairs = [
            (Severity.LOW, self.low),
            (Severity.MEDIUM, self.medium),
            (Severity.HIGH, self.high),
            (Severity.CRITICAL, self.critical),
        ]
        return [(severity, bound) for severity, bound in pairs if bound is not None]

    def classify(self, value: float) -> Severity | None:
        matched: Severity | None = None
        for severity, bound in self._bounds():
            if value >= bound:
                matched = severity
        return matched

    def band_range(self, severity: Severity) -> tuple[float, float | None]:
        bounds = self._bounds()
        for index, (candidate, lower) in enumerate(bounds):
            if candidate == severity:
                upper = bounds[index + 1][1] if index + 1 < len(bounds) else None
                return lower, upper
        raise ValueError(f"severity band {severity} is not configured")
