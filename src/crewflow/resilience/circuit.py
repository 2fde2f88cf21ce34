"""CircuitBreaker — per (executor, tool) guard against repeatedly failing calls."""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from crewflow.errors import CircuitOpenError

logger = logging.getLogger(__name__)

BreakerKey = tuple[str, str]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Three-state circuit breaker.

    ``before_call`` admits or rejects an attempt; the caller then reports the
    outcome with ``record_success`` / ``record_failure``. While HALF_OPEN only
    the single probe admitted on the OPEN -> HALF_OPEN transition may run.

    All state lives behind one lock, so a breaker can be shared by any number
    of concurrent callers.
    """

    def __init__(
        self,
        key: BreakerKey,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        with self._lock:
            return self._last_failure_time

    def before_call(self) -> None:
        """Raise ``CircuitOpenError`` unless an attempt may proceed."""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return
            if self._state is CircuitState.HALF_OPEN:
                # the probe is still in flight
                raise CircuitOpenError(self.key, 0.0)

            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed < self.recovery_timeout:
                raise CircuitOpenError(self.key, self.recovery_timeout - elapsed)

            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit %s/%s half-open, admitting one probe", *self.key)

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit %s/%s closed", *self.key)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit %s/%s probe failed, reopened", *self.key)
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit %s/%s opened after %d failures",
                    self.key[0],
                    self.key[1],
                    self._failure_count,
                )

    def abandon(self) -> None:
        """Give back an admitted probe whose call was interrupted without an outcome."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN

    def reset(self) -> None:
        """Operator reset: back to CLOSED with no failure history."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "last_failure_time": self._last_failure_time,
            }

    def __repr__(self) -> str:
        return f"CircuitBreaker({self.key!r}, state={self._state.value})"


class CircuitBreakerRegistry:
    """Owns one ``CircuitBreaker`` per (executor, tool) pair for the process lifetime."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._breakers: dict[BreakerKey, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(
        self,
        key: BreakerKey,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> CircuitBreaker:
        """Return the breaker for ``key``, creating it with the given limits on first use.

        Limits are fixed at creation. Asking for an existing key with different
        limits logs a warning and returns the breaker unchanged.
        """
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    failure_threshold=failure_threshold,
                    recovery_timeout=recovery_timeout,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            elif (breaker.failure_threshold, breaker.recovery_timeout) != (
                failure_threshold,
                recovery_timeout,
            ):
                logger.warning(
                    "Circuit %s/%s keeps threshold=%d timeout=%.1fs, ignoring %d/%.1fs",
                    key[0],
                    key[1],
                    breaker.failure_threshold,
                    breaker.recovery_timeout,
                    failure_threshold,
                    recovery_timeout,
                )
            return breaker

    def reset(self, key: BreakerKey | None = None) -> None:
        """Reset one breaker, or every breaker when ``key`` is None."""
        with self._lock:
            breakers = list(self._breakers.values()) if key is None else [self._breakers[key]]
        for breaker in breakers:
            breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {f"{k[0]}/{k[1]}": b.snapshot() for k, b in breakers.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
