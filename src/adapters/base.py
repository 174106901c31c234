"""
LFO - Backend Adapter Base

Abstract base class for inference backends.
The local device and the cloud model each implement this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.models import FunctionCall, Message, ToolSpec


@dataclass
class AdapterConfig:
    """Configuration for a backend adapter."""
    base_url: str
    api_key: str = ""
    model: str = ""
    timeout_seconds: float = 30.0


class BaseBackend(ABC):
    """
    Abstract base class for inference backends.

    The adapter is responsible for:
    1. Converting LFO messages/tools -> backend-specific request
    2. Making the call
    3. Converting the backend reply -> BackendResult
    4. Raising typed LfoExceptions for failures it can recognise
       (anything else is classified by the pipeline)

    Adapters never touch circuit breakers or stats; the pipeline owns both.
    """

    # Breaker / stats key, also the "backend" field of error bodies
    name: str

    # Public model id reported in responses and /v1/models
    model_id: str

    def __init__(self, config: AdapterConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    @abstractmethod
    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ):
        """
        Run one completion.

        Args:
            messages: Conversation, order preserved
            max_tokens: Output token cap
            temperature: Sampling temperature
            tools: Optional tool definitions

        Returns:
            BackendResult
        """
        pass

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    # ============================================================
    # Helper methods for subclasses
    # ============================================================

    @staticmethod
    def _parse_function_calls(raw: Any) -> List[FunctionCall]:
        """Accept a list of {name, arguments|args} mappings; skip malformed entries."""
        if not isinstance(raw, list):
            return []
        calls = []
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                continue
            arguments = item.get("arguments", item.get("args"))
            calls.append(
                FunctionCall(
                    name=item["name"],
                    arguments=arguments if isinstance(arguments, dict) else {},
                )
            )
        return calls

    @staticmethod
    def _messages_payload(messages: Sequence[Message]) -> List[Dict[str, str]]:
        return [m.to_dict() for m in messages]
