"""
LFO - Stats API

Read-only dashboard data: uptime, breaker states, running totals and the
most recent requests (newest first). No auth; meant for a local operator.
"""

from fastapi import APIRouter, Depends

from ...core.models import Target
from ...routing.pipeline import RequestPipeline
from ..dependencies import get_pipeline
from ..models import StatsResponse


router = APIRouter(prefix="/dashboard/api", tags=["stats"])


def _last_cloud_status(pipeline: RequestPipeline) -> str:
    record = pipeline.stats.last_record_for(Target.CLOUD)
    if record is None:
        return "unknown"
    return "ok" if record.status == 200 else "error"


@router.get("/stats", response_model=StatsResponse)
async def get_stats(pipeline: RequestPipeline = Depends(get_pipeline)):
    """Snapshot of the in-process request statistics."""
    snapshot = pipeline.stats.snapshot()
    states = pipeline.breakers.get_states()

    return {
        "status": {
            "uptime_ms": snapshot.uptime_ms,
            "circuit_state": states.get(pipeline.local.name, "closed"),
            "circuit_breakers": states,
            "gemini_last_status": _last_cloud_status(pipeline),
        },
        "totals": {
            "requests": snapshot.total_requests,
            "local": snapshot.total_local,
            "cloud": snapshot.total_cloud,
            "errors": snapshot.total_errors,
            "avg_latency_local_ms": snapshot.avg_latency_local_ms,
            "avg_latency_cloud_ms": snapshot.avg_latency_cloud_ms,
            "circuit_trips": snapshot.circuit_trip_count,
        },
        "recent": [record.to_dict() for record in snapshot.recent],
    }
