"""Rolling-window rate limiter for task dispatch."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class RollingWindowLimiter:
    """Allow at most ``max_calls`` acquisitions in any ``window``-second span.

    ``acquire`` never rejects: when the budget is spent it sleeps until the
    oldest call leaves the window. Waiters are served in arrival order.
    ``max_calls=None`` disables the limit.
    """

    def __init__(
        self,
        max_calls: int | None,
        window: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_calls is not None and max_calls < 1:
            raise ValueError(f"max_calls must be >= 1 or None, got {max_calls}")
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    @property
    def in_window(self) -> int:
        """Calls counted against the current window."""
        self._prune(self._clock())
        return len(self._calls)

    async def acquire(self) -> float:
        """Wait for budget and record one call. Returns the seconds spent waiting."""
        if self.max_calls is None:
            return 0.0

        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return waited
                delay = self._calls[0] + self.window - now
                logger.debug(
                    "Rate limit reached (%d/%d), waiting %.2fs",
                    len(self._calls),
                    self.max_calls,
                    delay,
                )
                await self._sleep(delay)
                waited += delay
