from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta

from trust_safety.config import get_settings


def _base64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def _base64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(f"{value}{padding}".encode("ascii"))


def _sign(payload_b64: str, secret: str) -> str:
    signature = hmac.new(secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).digest()
    return _base64url_encode(signature)


def create_admin_token(*, profile_id: str, now: datetime | None = None) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(UTC)
    expires_at = issued_at + timedelta(hours=settings.admin_token_expiry_hours)
    payload = {
        "sub": profile_id,
        "scope": "admin",
        "exp": int(expires_at.timestamp()),
        "v": 1,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    payload_b64 = _base64url_encode(payload_json)
    return f"{payload_b64}.{_sign(payload_b64, settings.admin_token_secret)}"


def verify_admin_token(*, token: str) -> str | None:
    """Return the admin profile id a valid, unexpired token was issued to."""
    settings = get_settings()
    parts = token.split(".", maxsplit=1)
    if len(parts) != 2:
        return None
    payload_b64, signature_b64 = parts
    if not hmac.compare_digest(signature_b64, _sign(payload_b64, settings.admin_token_secret)):
        return None

    try:
        payload = json.loads(_base64url_decode(payload_b64))
    except ValueError:
        return None

    if not isinstance(payload, dict) or payload.get("scope") != "admin":
        return None
    profile_id = payload.get("sub")
    exp = payload.get("exp")
    if not isinstance(profile_id, str) or not isinstance(exp, int):
        return None
    if int(datetime.now(UTC).timestamp()) >= exp:
        return None
    return profile_id
