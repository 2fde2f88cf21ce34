"""Tests for CircuitBreaker and CircuitBreakerRegistry."""

import pytest

from crewflow.errors import CircuitOpenError
from crewflow.resilience.circuit import CircuitBreaker, CircuitBreakerRegistry, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _breaker(clock: FakeClock, threshold: int = 3, timeout: float = 10.0) -> CircuitBreaker:
    return CircuitBreaker(
        ("agent", "search"),
        failure_threshold=threshold,
        recovery_timeout=timeout,
        clock=clock,
    )


class TestCircuitBreaker:
    def test_starts_closed(self):
        b = _breaker(FakeClock())
        assert b.state == CircuitState.CLOSED
        b.before_call()

    def test_opens_at_threshold(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(2):
            b.record_failure()
        assert b.state == CircuitState.CLOSED
        b.record_failure()
        assert b.state == CircuitState.OPEN
        assert b.failure_count == 3
        assert b.last_failure_time == clock.now

    def test_open_rejects_until_timeout(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(3):
            b.record_failure()
        clock.now += 9.9
        with pytest.raises(CircuitOpenError) as exc:
            b.before_call()
        assert exc.value.key == ("agent", "search")
        assert exc.value.retry_after == pytest.approx(0.1)

    def test_half_open_admits_exactly_one_probe(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(3):
            b.record_failure()
        clock.now += 10
        b.before_call()
        assert b.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            b.before_call()

    def test_probe_success_closes(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(3):
            b.record_failure()
        clock.now += 10
        b.before_call()
        b.record_success()
        assert b.state == CircuitState.CLOSED
        assert b.failure_count == 0
        b.before_call()

    def test_probe_failure_reopens_immediately(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(3):
            b.record_failure()
        clock.now += 10
        b.before_call()
        b.record_failure()
        assert b.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            b.before_call()
        clock.now += 10
        b.before_call()
        assert b.state == CircuitState.HALF_OPEN

    def test_success_resets_failure_count(self):
        b = _breaker(FakeClock())
        b.record_failure()
        b.record_failure()
        b.record_success()
        b.record_failure()
        assert b.state == CircuitState.CLOSED
        assert b.failure_count == 1

    def test_abandoned_probe_returns_to_open(self):
        clock = FakeClock()
        b = _breaker(clock)
        for _ in range(3):
            b.record_failure()
        clock.now += 10
        b.before_call()
        b.abandon()
        assert b.state == CircuitState.OPEN
        b.before_call()
        assert b.state == CircuitState.HALF_OPEN

    def test_operator_reset(self):
        b = _breaker(FakeClock())
        for _ in range(3):
            b.record_failure()
        b.reset()
        assert b.snapshot() == {"state": "closed", "failure_count": 0, "last_failure_time": None}


class TestCircuitBreakerRegistry:
    def test_one_breaker_per_pair(self):
        reg = CircuitBreakerRegistry()
        a = reg.get(("agent", "search"))
        assert reg.get(("agent", "search")) is a
        assert reg.get(("agent", "fetch")) is not a
        assert reg.get(("other", "search")) is not a
        assert len(reg) == 3

    def test_limits_applied_on_creation(self):
        reg = CircuitBreakerRegistry()
        b = reg.get(("a", "t"), failure_threshold=2, recovery_timeout=5.0)
        assert b.failure_threshold == 2
        assert b.recovery_timeout == 5.0

    def test_first_limits_stick_and_mismatch_is_logged(self, caplog):
        reg = CircuitBreakerRegistry()
        b = reg.get(("a", "t"), failure_threshold=2, recovery_timeout=5.0)
        with caplog.at_level("WARNING", logger="crewflow.resilience.circuit"):
            assert reg.get(("a", "t"), failure_threshold=2, recovery_timeout=5.0) is b
            assert caplog.records == []
            assert reg.get(("a", "t"), failure_threshold=9, recovery_timeout=60.0) is b
        assert (b.failure_threshold, b.recovery_timeout) == (2, 5.0)
        [record] = caplog.records
        assert "a/t keeps threshold=2" in record.getMessage()

    def test_reset_single_and_all(self):
        reg = CircuitBreakerRegistry()
        a = reg.get(("a", "t"), failure_threshold=1)
        b = reg.get(("b", "t"), failure_threshold=1)
        a.record_failure()
        b.record_failure()
        reg.reset(("a", "t"))
        assert a.state == CircuitState.CLOSED
        assert b.state == CircuitState.OPEN
        reg.reset()
        assert b.state == CircuitState.CLOSED

    def test_snapshot_keys(self):
        reg = CircuitBreakerRegistry()
        reg.get(("a", "t"))
        assert list(reg.snapshot()) == ["a/t"]
