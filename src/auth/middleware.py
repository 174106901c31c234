"""
LFO - Auth Gate

FastAPI dependency that enforces the shared bearer token on the
completion endpoint. It runs before the pipeline, so rejected calls never
touch a backend, a breaker or the stats.
"""

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from ..core.errors import InvalidTokenError
from .config import AuthConfig


@dataclass
class AuthContext:
    """Result of the gate for one request."""
    authenticated: bool
    request_id: str = ""


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:]


def check_bearer_token(config: AuthConfig, authorization: Optional[str]) -> bool:
    """Constant-time comparison of the presented bearer token."""
    if not config.enabled:
        return True
    provided = _extract_bearer(authorization)
    if provided is None:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), config.token.encode("utf-8"))


async def get_auth_context(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AuthContext:
    """
    FastAPI dependency that validates the bearer token.

    Usage:
        @router.post("/v1/chat/completions")
        async def create(auth: AuthContext = Depends(get_auth_context)):
            ...

    Raises:
        InvalidTokenError: token required and missing or wrong
    """
    config: AuthConfig = getattr(request.app.state, "auth_config", None) or AuthConfig()
    request_id = getattr(request.state, "request_id", "")

    if not check_bearer_token(config, authorization):
        raise InvalidTokenError(request_id=request_id)

    return AuthContext(authenticated=config.enabled, request_id=request_id)
