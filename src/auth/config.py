"""
LFO - Auth Configuration

Single shared bearer token. When LFO_AUTH_TOKEN is unset the gate is open,
which suits a gateway bound to localhost next to its only client.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthConfig:
    """Bearer-token gate configuration."""
    token: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.token)
