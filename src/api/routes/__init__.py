"""
LFO - API Routes

Route modules for different API endpoints.
"""

from .chat import router as chat_router
from .models import router as models_router
from .stats import router as stats_router

__all__ = [
    "chat_router",
    "models_router",
    "stats_router",
]
