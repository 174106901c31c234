"""
LFO - Circuit Breaker Tests

Verifies:
- CLOSED -> OPEN after consecutive tripworthy failures
- Fast-fail while OPEN
- Single-flight HALF_OPEN probe, including under thread contention
- Permanent auth/quota failures never move the failure count
- Outcomes of calls admitted before a transition never move state
- Registry isolation and transition listeners
"""

import threading

from src.routing.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)

from conftest import ManualClock


def _breaker(clock, threshold=3, reset=30):
    return CircuitBreaker(
        "local",
        CircuitBreakerConfig(failure_threshold=threshold, reset_timeout_seconds=reset),
        clock=clock,
    )


def _trip(breaker, times=3):
    for _ in range(times):
        admission = breaker.allow_request()
        assert admission is not None
        breaker.record_failure(admission, tripworthy=True)


class TestCircuitBreaker:
    """State transitions for a single breaker."""

    def test_initial_state_is_closed(self):
        cb = _breaker(ManualClock())
        assert cb.state == CircuitState.CLOSED
        assert cb.retry_after_seconds() == 0
        assert cb.allow_request().probe is False

    def test_opens_after_threshold(self):
        cb = _breaker(ManualClock())
        _trip(cb, 2)
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 2

        _trip(cb, 1)
        assert cb.state == CircuitState.OPEN

    def test_success_resets_failure_count(self):
        cb = _breaker(ManualClock())
        _trip(cb, 2)
        cb.record_success(cb.allow_request())
        assert cb.consecutive_failures == 0

        _trip(cb, 2)
        assert cb.state == CircuitState.CLOSED

    def test_open_fast_fails(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)

        assert cb.allow_request() is None
        assert cb.retry_after_seconds() == 30

        clock.advance(10.5)
        assert cb.allow_request() is None
        assert cb.retry_after_seconds() == 20

    def test_probe_admitted_after_reset_timeout(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)

        clock.advance(30)
        probe = cb.allow_request()
        assert probe is not None
        assert probe.probe is True
        assert cb.state == CircuitState.HALF_OPEN

        # Everyone else waits for the probe
        assert cb.allow_request() is None
        assert cb.allow_request() is None

    def test_probe_success_closes(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(30)

        cb.record_success(cb.allow_request())

        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.allow_request() is not None

    def test_probe_failure_reopens_with_fresh_timer(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(31)

        cb.record_failure(cb.allow_request(), tripworthy=True)

        assert cb.state == CircuitState.OPEN
        assert cb.retry_after_seconds() == 30

        clock.advance(29)
        assert cb.allow_request() is None
        clock.advance(1)
        assert cb.allow_request() is not None

    def test_permanent_failure_never_counts(self):
        cb = _breaker(ManualClock())
        for _ in range(10):
            cb.record_failure(cb.allow_request(), tripworthy=False)

        assert cb.consecutive_failures == 0
        assert cb.state == CircuitState.CLOSED

    def test_permanent_failure_in_half_open_releases_probe(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(30)

        cb.record_failure(cb.allow_request(), tripworthy=False)

        assert cb.state == CircuitState.HALF_OPEN
        assert cb.allow_request() is not None

    def test_release_probe(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(30)

        probe = cb.allow_request()
        assert cb.allow_request() is None
        cb.release_probe(probe)
        assert cb.allow_request() is not None

    def test_force_open(self):
        cb = _breaker(ManualClock())
        cb.force_open()
        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is None
        assert cb.retry_after_seconds() == 30


class TestOutcomesFromEarlierAdmissions:
    """A call admitted before a transition reports into a breaker that has moved on."""

    def test_success_admitted_before_trip_keeps_circuit_open(self):
        cb = _breaker(ManualClock())
        slow_call = cb.allow_request()
        _trip(cb)

        cb.record_success(slow_call)

        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is None

    def test_failure_admitted_before_trip_does_not_free_probe_slot(self):
        clock = ManualClock()
        cb = _breaker(clock)
        slow_call = cb.allow_request()
        _trip(cb)
        clock.advance(60)

        probe = cb.allow_request()
        assert probe.probe is True

        cb.record_failure(slow_call, tripworthy=False)

        assert cb.allow_request() is None
        assert cb.state == CircuitState.HALF_OPEN

    def test_tripworthy_failure_admitted_before_trip_does_not_reopen(self):
        clock = ManualClock()
        cb = _breaker(clock)
        slow_call = cb.allow_request()
        _trip(cb)
        clock.advance(30)
        probe = cb.allow_request()

        cb.record_failure(slow_call, tripworthy=True)
        assert cb.state == CircuitState.HALF_OPEN

        cb.record_success(probe)
        assert cb.state == CircuitState.CLOSED

    def test_release_from_earlier_admission_is_ignored(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(30)
        first_probe = cb.allow_request()
        cb.record_failure(first_probe, tripworthy=True)
        clock.advance(30)
        cb.allow_request()

        cb.release_probe(first_probe)

        assert cb.allow_request() is None

    def test_failures_after_trip_do_not_extend_cooldown(self):
        clock = ManualClock()
        cb = _breaker(clock)
        in_flight = [cb.allow_request() for _ in range(3)]
        _trip(cb)

        clock.advance(20)
        for admission in in_flight:
            cb.record_failure(admission, tripworthy=True)

        assert cb.retry_after_seconds() == 10


class TestHalfOpenConcurrency:
    """Exactly one concurrent caller becomes the probe."""

    def test_single_probe_under_thread_contention(self):
        clock = ManualClock()
        cb = _breaker(clock)
        _trip(cb)
        clock.advance(30)

        workers = 32
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def attempt():
            barrier.wait()
            admission = cb.allow_request()
            with results_lock:
                results.append(admission)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == workers
        admitted = [r for r in results if r is not None]
        assert len(admitted) == 1
        assert admitted[0].probe is True
        assert cb.state == CircuitState.HALF_OPEN


class TestCircuitBreakerRegistry:
    """Per-backend isolation and listeners."""

    def test_breakers_are_independent(self):
        registry = CircuitBreakerRegistry(clock=ManualClock())
        local = registry.get_breaker("local")
        cloud = registry.get_breaker("cloud")

        _trip(local)

        assert local.state == CircuitState.OPEN
        assert cloud.state == CircuitState.CLOSED
        assert registry.get_breaker("local") is local

    def test_per_backend_config(self):
        registry = CircuitBreakerRegistry(
            configs={"cloud": CircuitBreakerConfig(failure_threshold=1, reset_timeout_seconds=60)},
            clock=ManualClock(),
        )
        assert registry.get_breaker("cloud").config.reset_timeout_seconds == 60
        assert registry.get_breaker("local").config.failure_threshold == 3

    def test_listener_sees_transitions(self):
        clock = ManualClock()
        registry = CircuitBreakerRegistry(clock=clock)
        seen = []
        registry.add_listener(lambda name, old, new: seen.append((name, old, new)))

        cb = registry.get_breaker("local")
        _trip(cb)
        clock.advance(30)
        cb.record_success(cb.allow_request())

        assert seen == [
            ("local", CircuitState.CLOSED, CircuitState.OPEN),
            ("local", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("local", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_get_states(self):
        registry = CircuitBreakerRegistry(clock=ManualClock())
        _trip(registry.get_breaker("local"))
        registry.get_breaker("cloud")

        assert registry.get_states() == {"local": "open", "cloud": "closed"}
