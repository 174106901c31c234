"""
LFO Adapters Module

Backend adapters that translate between LFO messages and each
backend's native API format.
"""

from .base import BaseBackend, AdapterConfig
from .local_adapter import LocalBackendAdapter, DEFAULT_LOCAL_MODEL_ID
from .gemini_adapter import GeminiAdapter, DEFAULT_CLOUD_MODEL_ID
from .stub_adapter import StubLocalBackend, StubCloudBackend

__all__ = [
    "BaseBackend",
    "AdapterConfig",
    "LocalBackendAdapter",
    "GeminiAdapter",
    "StubLocalBackend",
    "StubCloudBackend",
    "DEFAULT_LOCAL_MODEL_ID",
    "DEFAULT_CLOUD_MODEL_ID",
]
