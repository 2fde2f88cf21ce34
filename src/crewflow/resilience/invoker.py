"""ResilientInvoker — retry with exponential backoff behind a circuit breaker."""

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from crewflow.errors import CircuitOpenError, InvocationError
from crewflow.resilience.circuit import BreakerKey, CircuitBreakerRegistry

logger = logging.getLogger(__name__)

# 2**64 already dwarfs any sane max_delay
_MAX_EXPONENT = 64


async def call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await ``func`` if it is a coroutine function, else run it in a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await asyncio.to_thread(func, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class ResilienceConfig:
    """Retry and circuit-breaker limits for one executor or tool call."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")


def backoff_delay(
    attempt: int,
    config: ResilienceConfig,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number ``attempt`` (0-based).

    ``min(base_delay * 2**attempt, max_delay)`` plus uniform jitter in
    ``[0, delay * jitter]`` when an ``rng`` is given.
    """
    delay = min(config.base_delay * 2 ** min(attempt, _MAX_EXPONENT), config.max_delay)
    if rng is not None and config.jitter:
        delay += rng.uniform(0.0, delay * config.jitter)
    return delay


class ResilientInvoker:
    """Wrap external calls with retry/backoff and a per-key circuit breaker.

    ``func`` may be a coroutine function or a plain callable; plain callables
    run in a worker thread. Every attempt first asks the breaker for ``key``;
    an open circuit raises ``CircuitOpenError`` without calling ``func``. When
    every attempt fails the last error is surfaced wrapped in
    ``InvocationError``.

    ``CircuitOpenError`` and ``InvocationError`` raised from inside ``func``
    belong to a nested call (an executor using a tool). They propagate at once
    and are not counted against ``key``.

    ``sleep`` only suspends the calling coroutine, so sibling tasks keep
    running during backoff.
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ResilienceConfig()
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock)
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def invoke(
        self,
        func: Callable[..., Any],
        *args: Any,
        key: BreakerKey,
        config: ResilienceConfig | None = None,
        **kwargs: Any,
    ) -> Any:
        cfg = config or self.config
        breaker = self.breakers.get(
            key,
            failure_threshold=cfg.failure_threshold,
            recovery_timeout=cfg.recovery_timeout,
        )
        attempts = cfg.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(attempts):
            if attempt:
                delay = backoff_delay(attempt - 1, cfg, self._rng)
                logger.debug(
                    "%s/%s: retry %d/%d in %.2fs", key[0], key[1], attempt, cfg.max_retries, delay
                )
                await self._sleep(delay)

            breaker.before_call()
            try:
                result = await call(func, *args, **kwargs)
            except (CircuitOpenError, InvocationError):
                # raised by a nested invocation with its own breaker
                breaker.abandon()
                raise
            except Exception as e:
                breaker.record_failure()
                last_error = e
                logger.info(
                    "%s/%s: attempt %d/%d failed: %s", key[0], key[1], attempt + 1, attempts, e
                )
                continue
            except BaseException:
                breaker.abandon()
                raise

            breaker.record_success()
            return result

        assert last_error is not None
        raise InvocationError(key, attempts, last_error) from last_error
