from __future__ import annotations

from trust_safety.errors import (
    Blocked,
    FarmingDetected,
    InvalidTransition,
    NotFound,
    RateLimited,
    StoreUnavailable,
    TrustSafetyError,
)


def test_retry_after_rounds_up_to_whole_seconds() -> None:
    assert RateLimited("slow down", retry_after=12.2).retry_after_seconds == 13
    assert RateLimited("slow down", retry_after=0.01).retry_after_seconds == 1
    assert RateLimited("slow down").retry_after_seconds is None


def test_payload_shape() -> None:
    payload = FarmingDetected("cooldown active", retry_after=90).to_payload()
    assert payload == {
        "kind": "farming_detected",
        "message": "cooldown active",
        "retryable": True,
        "retry_after": 90,
    }


def test_kinds_are_distinct_and_share_base() -> None:
    errors = [Blocked, FarmingDetected, InvalidTransition, NotFound, RateLimited, StoreUnavailable]
    assert len({error.kind for error in errors}) == len(errors)
    assert all(issubclass(error, TrustSafetyError) for error in errors)
    assert Blocked("no").retryable is False
    assert StoreUnavailable("down").retryable is True
