"""
LFO - API Response Models

Pydantic models for the read-only endpoints.

The completion endpoint takes its body as raw JSON: validation lives in
the request pipeline so that rejected requests are counted in the stats.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================
# Models list
# ============================================================

class ModelCard(BaseModel):
    """OpenAI-style model entry."""
    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "lfo"


class ModelListResponse(BaseModel):
    """Response for GET /v1/models."""
    object: Literal["list"] = "list"
    data: List[ModelCard]


# ============================================================
# Health
# ============================================================

class HealthResponse(BaseModel):
    """Response for GET /health."""
    status: Literal["ok"] = "ok"
    timestamp: int
    version: str


# ============================================================
# Stats
# ============================================================

class StatsStatus(BaseModel):
    """Process and backend status block."""
    uptime_ms: int
    circuit_state: str = Field(description="State of the local backend breaker")
    circuit_breakers: Dict[str, str] = Field(default_factory=dict)
    gemini_last_status: Literal["ok", "error", "unknown"]


class StatsTotals(BaseModel):
    """Running counters since process start."""
    requests: int
    local: int
    cloud: int
    errors: int
    avg_latency_local_ms: int
    avg_latency_cloud_ms: int
    circuit_trips: int


class StatsRecord(BaseModel):
    """One entry of the recent-requests ring."""
    ts: str
    mode: str
    target: Optional[str] = None
    prompt_tokens: int
    completion_tokens: int
    latency_ms: int
    status: int
    error: Optional[str] = None


class StatsResponse(BaseModel):
    """Response for GET /dashboard/api/stats."""
    status: StatsStatus
    totals: StatsTotals
    recent: List[StatsRecord]
