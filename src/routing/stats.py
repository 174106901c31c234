"""
LFO - Request Statistics

In-process request statistics for the stats endpoint:
- Fixed-size ring buffer of recent requests (oldest evicted first)
- Running totals per target, error count, latency sums
- Circuit breaker trip count

Nothing is persisted; counters reset on process restart.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Deque, List, Optional

from ..core.models import RequestRecord, Target


DEFAULT_RING_SIZE = 50


@dataclass
class StatsSnapshot:
    """Point-in-time copy of the recorder."""
    uptime_ms: int
    total_requests: int
    total_local: int
    total_cloud: int
    total_errors: int
    sum_latency_local_ms: int
    sum_latency_cloud_ms: int
    avg_latency_local_ms: int
    avg_latency_cloud_ms: int
    circuit_trip_count: int
    recent: List[RequestRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "uptime_ms": self.uptime_ms,
            "total_requests": self.total_requests,
            "total_local": self.total_local,
            "total_cloud": self.total_cloud,
            "total_errors": self.total_errors,
            "avg_latency_local_ms": self.avg_latency_local_ms,
            "avg_latency_cloud_ms": self.avg_latency_cloud_ms,
            "circuit_trip_count": self.circuit_trip_count,
            "recent": [r.to_dict() for r in self.recent],
        }


class StatsRecorder:
    """
    Ring buffer plus running counters.

    Writers come from the request pipeline (and breaker trip listeners);
    readers take a snapshot. The lock is only held for the append or the
    copy, never across I/O.
    """

    def __init__(self, capacity: int = DEFAULT_RING_SIZE, clock=time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._clock = clock
        self._started_at = clock()
        self._lock = Lock()

        self._ring: Deque[RequestRecord] = deque(maxlen=capacity)

        self._total_requests = 0
        self._total_local = 0
        self._total_cloud = 0
        self._total_errors = 0
        self._sum_latency_local = 0
        self._sum_latency_cloud = 0
        self._circuit_trips = 0

    def record(self, record: RequestRecord):
        """Append a finished request and fold it into the totals."""
        with self._lock:
            self._ring.append(record)

            self._total_requests += 1
            if record.target == Target.LOCAL.value:
                self._total_local += 1
                self._sum_latency_local += record.latency_ms
            elif record.target == Target.CLOUD.value:
                self._total_cloud += 1
                self._sum_latency_cloud += record.latency_ms

            if record.status >= 400:
                self._total_errors += 1

    def increment_circuit_trips(self):
        """Count one breaker transition into OPEN."""
        with self._lock:
            self._circuit_trips += 1

    def snapshot(self) -> StatsSnapshot:
        """Copy counters and ring contents, newest first."""
        with self._lock:
            recent = list(self._ring)
            total_local = self._total_local
            total_cloud = self._total_cloud
            sum_local = self._sum_latency_local
            sum_cloud = self._sum_latency_cloud
            snapshot = StatsSnapshot(
                uptime_ms=int((self._clock() - self._started_at) * 1000),
                total_requests=self._total_requests,
                total_local=total_local,
                total_cloud=total_cloud,
                total_errors=self._total_errors,
                sum_latency_local_ms=sum_local,
                sum_latency_cloud_ms=sum_cloud,
                avg_latency_local_ms=round(sum_local / total_local) if total_local else 0,
                avg_latency_cloud_ms=round(sum_cloud / total_cloud) if total_cloud else 0,
                circuit_trip_count=self._circuit_trips,
            )

        recent.reverse()
        snapshot.recent = recent
        return snapshot

    def last_record_for(self, target: Target) -> Optional[RequestRecord]:
        """Most recent record routed to a target, if any."""
        with self._lock:
            for record in reversed(self._ring):
                if record.target == target.value:
                    return record
        return None
