from __future__ import annotations

import ipaddress

from fastapi import Request

from app.core.config import settings
from app.models.user import StaffRole
from app.services.access import Identity
from app.services.errors import Unauthenticated


async def get_identity(request: Request) -> Identity | None:
    """Identity forwarded by the authentication gateway.

    No ``X-User-Id`` header means an anonymous caller; the services decide
    whether that is acceptable. A header that is present but malformed is
    rejected outright.
    """
    raw_user_id = request.headers.get("x-user-id")
    if raw_user_id is None or not raw_user_id.strip():
        return None
    try:
        user_id = int(raw_user_id.strip())
    except ValueError as exc:
        raise Unauthenticated("Invalid user id") from exc
    if user_id <= 0:
        raise Unauthenticated("Invalid user id")

    raw_role = (request.headers.get("x-staff-role") or "").strip().lower()
    if not raw_role:
        return Identity(user_id=user_id)
    try:
        role = StaffRole(raw_role)
    except ValueError as exc:
        raise Unauthenticated("Invalid staff role") from exc
    return Identity(user_id=user_id, staff_role=role)


async def get_request_ip(request: Request) -> str | None:
    def _valid_ip(raw: str | None) -> str | None:
        if not raw:
            return None
        try:
            return str(ipaddress.ip_address(raw.strip()))
        except ValueError:
            return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            for candidate in forwarded.split(","):
                parsed = _valid_ip(candidate)
                if parsed:
                    return parsed
        real_ip = _valid_ip(request.headers.get("x-real-ip"))
        if real_ip:
            return real_ip

    if request.client:
        return _valid_ip(request.client.host)
    return None


def request_meta(request: Request, ip: str | None) -> dict:
    meta: dict = {}
    if ip:
        meta["ip"] = ip
    user_agent = request.headers.get("user-agent")
    if user_agent:
        meta["user_agent"] = user_agent[:255]
    return meta
