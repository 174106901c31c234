"""
LFO - Circuit Breaker

Implements the Circuit Breaker pattern so a dead backend fails fast
instead of costing every caller a full timeout.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend is down, requests fail fast
- HALF_OPEN: Exactly one probe request tests recovery

Transitions:
- CLOSED -> OPEN: failure_threshold consecutive tripworthy failures
- OPEN -> HALF_OPEN: first caller after reset_timeout becomes the probe
- HALF_OPEN -> CLOSED: probe succeeded
- HALF_OPEN -> OPEN: probe failed (opened_at refreshed)

Every admitted call gets an Admission stamped with the breaker's
generation, which is bumped on each transition. Outcomes reported with an
admission from an earlier generation are counted but never move state, so
a slow call started before a trip cannot close the breaker early or free
the slot of the current probe.

All reads and writes of breaker state happen inside one lock. No awaits
happen while it is held, so it is safe from both threads and coroutines.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List, Optional

from ..observability.logging import get_logger


logger = get_logger(__name__)

Clock = Callable[[], float]
TransitionListener = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing fast
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    # Consecutive tripworthy failures that open the circuit
    failure_threshold: int = 3

    # Time in OPEN before a probe is admitted (seconds)
    reset_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class Admission:
    """Ticket for one admitted call, handed back with its outcome."""
    generation: int
    probe: bool = False


@dataclass
class CircuitStats:
    """Mutable breaker state."""
    consecutive_failures: int = 0
    opened_at: float = 0.0
    half_open_probe_in_flight: bool = False
    generation: int = 0


class CircuitBreaker:
    """
    Circuit breaker for a single backend.

    Usage:
        admission = breaker.allow_request()
        if admission is None:
            raise CircuitOpenError(breaker.name, breaker.retry_after_seconds())
        try:
            result = await call()
        except Exception:
            breaker.record_failure(admission, tripworthy=...)
            raise
        breaker.record_success(admission)
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = time.monotonic,
        listeners: Optional[List[TransitionListener]] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._listeners = listeners if listeners is not None else []
        self._state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._lock = Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self.stats.consecutive_failures

    def allow_request(self) -> Optional[Admission]:
        """
        Admit or reject a call.

        Returns None when rejected. In OPEN past the cooldown, the first
        caller moves the breaker to HALF_OPEN and is admitted as the probe.
        While a probe is in flight every other caller is rejected.
        """
        transition = None
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return Admission(self.stats.generation)

            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    return None
                transition = self._transition_to(CircuitState.HALF_OPEN)
            elif self.stats.half_open_probe_in_flight:
                return None

            self.stats.half_open_probe_in_flight = True
            admission = Admission(self.stats.generation, probe=True)

        self._notify(transition)
        return admission

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self.stats.opened_at >= self.config.reset_timeout_seconds

    def _is_current(self, admission: Admission) -> bool:
        return admission.generation == self.stats.generation

    def record_success(self, admission: Admission):
        """Record a successful call. A current probe closes the circuit."""
        transition = None
        with self._lock:
            if not self._is_current(admission):
                return
            self.stats.consecutive_failures = 0
            if admission.probe:
                self.stats.half_open_probe_in_flight = False
                transition = self._transition_to(CircuitState.CLOSED)

        self._notify(transition)

    def record_failure(self, admission: Admission, tripworthy: bool = True):
        """
        Record a failed call.

        Non-tripworthy failures (permanent auth/quota) only release the probe
        slot; they never move the failure count.
        """
        transition = None
        with self._lock:
            if not self._is_current(admission):
                return
            if admission.probe:
                self.stats.half_open_probe_in_flight = False

            if not tripworthy:
                return

            self.stats.consecutive_failures += 1
            if admission.probe or self.stats.consecutive_failures >= self.config.failure_threshold:
                transition = self._open()

        self._notify(transition)

    def release_probe(self, admission: Admission):
        """Free the probe slot for a call that ended without an outcome (cancelled)."""
        with self._lock:
            if admission.probe and self._is_current(admission):
                self.stats.half_open_probe_in_flight = False

    def retry_after_seconds(self) -> int:
        """Seconds until the next probe is admitted (0 when not OPEN)."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return 0
            remaining = self.config.reset_timeout_seconds - (self._clock() - self.stats.opened_at)
            return max(0, math.ceil(remaining))

    def _open(self):
        """Enter OPEN and stamp opened_at (must hold lock)."""
        self.stats.opened_at = self._clock()
        self.stats.half_open_probe_in_flight = False
        return self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState):
        """Change state and start a new generation (must hold lock)."""
        old_state = self._state
        self._state = new_state
        self.stats.generation += 1
        return (old_state, new_state)

    def _notify(self, transition):
        """Log and fan out a transition. Called without the lock held."""
        if transition is None:
            return
        old_state, new_state = transition

        if new_state == CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker {self.name} OPEN",
                backend=self.name,
                from_state=old_state.value,
                consecutive_failures=self.consecutive_failures,
                reset_timeout_seconds=self.config.reset_timeout_seconds,
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} HALF_OPEN, probing", backend=self.name)
        else:
            logger.info(f"Circuit breaker {self.name} CLOSED, recovered", backend=self.name)

        for listener in self._listeners:
            listener(self.name, old_state, new_state)

    def force_open(self):
        """Manually open the circuit (for testing or emergency)."""
        with self._lock:
            transition = self._open()
        self._notify(transition)


class CircuitBreakerRegistry:
    """
    Registry holding one independent breaker per backend.

    Breakers share a clock and transition listeners but never state.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
        clock: Clock = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._configs = dict(configs or {})
        self._clock = clock
        self._listeners: List[TransitionListener] = []
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def add_listener(self, listener: TransitionListener):
        """Subscribe to state transitions of every breaker."""
        self._listeners.append(listener)

    def get_breaker(self, name: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a backend."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name,
                    self._configs.get(name, self.config),
                    clock=self._clock,
                    listeners=self._listeners,
                )
            return self._breakers[name]

    def get_states(self) -> Dict[str, str]:
        """Compact name -> state mapping."""
        with self._lock:
            breakers = list(self._breakers.items())
        return {name: breaker.state.value for name, breaker in breakers}
