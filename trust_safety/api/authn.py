from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from trust_safety.config import Settings, get_settings
from trust_safety.db.history import AuditActor
from trust_safety.security.web_auth import verify_admin_token

CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")
MAX_DEVICE_ID_LENGTH = 128


@dataclass(frozen=True, slots=True)
class AdminContext:
    profile_id: str
    device_id: str | None
    ip_address: str | None

    @property
    def actor(self) -> AuditActor:
        return AuditActor(admin_id=self.profile_id, device_id=self.device_id, ip_address=self.ip_address)


def _parse_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def resolve_client_ip(request: Request) -> str | None:
    """First hop of the forwarding headers, normalized, else the socket peer.

    Unparseable header values are ignored rather than stored.
    """
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            first_hop = _parse_ip(value.split(",")[0])
            if first_hop:
                return first_hop
    return _parse_ip(request.client.host) if request.client else None


def clip_device_id(value: str | None) -> str | None:
    return value[:MAX_DEVICE_ID_LENGTH] if value else None


def resolve_admin_from_bearer(*, authorization: str | None, settings: Settings) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    profile_id = verify_admin_token(token=authorization.removeprefix("Bearer ").strip())
    if profile_id is None:
        raise HTTPException(status_code=401, detail="invalid bearer token")
    if profile_id.lower() not in set(settings.admin_profile_id_list()):
        raise HTTPException(status_code=403, detail="admin access required")
    return profile_id


def require_admin(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
    x_device_id: Annotated[str | None, Header()] = None,
) -> AdminContext:
    profile_id = resolve_admin_from_bearer(authorization=authorization, settings=settings)
    return AdminContext(
        profile_id=profile_id,
        device_id=clip_device_id(x_device_id),
        ip_address=resolve_client_ip(request),
    )
