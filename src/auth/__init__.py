"""
LFO - Authentication Module

Optional shared bearer-token gate for the completion endpoint.
"""

from .middleware import AuthContext, check_bearer_token, get_auth_context
from .config import AuthConfig

__all__ = [
    "AuthContext",
    "AuthConfig",
    "check_bearer_token",
    "get_auth_context",
]
