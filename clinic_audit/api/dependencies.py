"""
Per-request session resolution.

Authentication happens upstream; the gateway forwards the verified identity in
X-Actor-* headers and the bearer token unchanged. The context is built once
here and passed down explicitly.
"""
from typing import Optional

from fastapi import Request

from clinic_audit.services.context import ClientInfo, Principal, SessionContext


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_session_context(request: Request) -> SessionContext:
    """Dependency for FastAPI endpoints to get the caller's session context."""
    actor_id = (request.headers.get("x-actor-id") or "").strip()
    principal = None
    if actor_id:
        principal = Principal(
            id=actor_id,
            email=request.headers.get("x-actor-email") or None,
            role=request.headers.get("x-actor-role") or None,
        )

    return SessionContext(
        principal=principal,
        access_token=_bearer_token(request),
        client=ClientInfo.from_headers(request.headers),
        ip_address=request.client.host if request.client else None,
    )
