"""Error taxonomy shared by every trust & safety component.

Each error carries a stable ``kind`` and, when the caller may simply try
again later, a ``retry_after`` hint in seconds. ``to_payload`` is what the
HTTP layer renders, so messages must never include storage details.
"""

from __future__ import annotations

import math
from typing import Any


class TrustSafetyError(Exception):
    kind = "trust_safety_error"
    retryable = False

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after_seconds,
        }


class RateLimited(TrustSafetyError):
    kind = "rate_limited"
    retryable = True


class Blocked(TrustSafetyError):
    kind = "blocked"


class FarmingDetected(TrustSafetyError):
    kind = "farming_detected"
    retryable = True


class NotFound(TrustSafetyError):
    kind = "not_found"


class InvalidTransition(TrustSafetyError):
    kind = "invalid_transition"


class StoreUnavailable(TrustSafetyError):
    kind = "store_unavailable"
    retryable = True
