from __future__ import annotations

from fastapi import Request

from app.schemas.request_identity import RequestIdentity

SYSTEM_EMAIL = "system@local"


def _identity_from_legacy_header(request: Request) -> RequestIdentity:
    email = (
        request.headers.get("X-User-Email")
        or request.headers.get("X-User")
        or SYSTEM_EMAIL
    )
    return RequestIdentity(
        email=(email or "").strip().lower() or None,
        auth_source="legacy_header",
    )


def resolve_request_identity(request: Request) -> RequestIdentity:
    cached = getattr(request.state, "identity", None)
    if isinstance(cached, RequestIdentity):
        return cached
    identity = _identity_from_legacy_header(request)
    request.state.identity = identity
    return identity


def get_request_email(request: Request) -> str:
    identity = resolve_request_identity(request)
    return identity.email or SYSTEM_EMAIL
