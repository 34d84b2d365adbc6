"""Sliding-window rate limiter for outbound catalog API requests."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import structlog

log = structlog.stdlib.get_logger()


class RateLimiter:
    """Cooperative rate limiter enforcing a request window and a minimum spacing.

    Safe for sequential reuse from a single task; not designed for many
    concurrent callers.
    """

    def __init__(
        self,
        max_requests_per_window: int = 20,
        window_seconds: float = 60.0,
        min_delay_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        safety_margin: float = 0.1,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_window: Requests allowed inside any sliding window
            window_seconds: Length of the sliding window in seconds
            min_delay_seconds: Minimum spacing between two requests in seconds
            clock: Monotonic time source
            sleep: Coroutine used to wait
            safety_margin: Extra seconds added when waiting for the window to drain
        """
        if max_requests_per_window < 1:
            raise ValueError("max_requests_per_window must be at least 1")

        self.max_requests_per_window = max_requests_per_window
        self.window_seconds = window_seconds
        self.min_delay_seconds = min_delay_seconds
        self.safety_margin = safety_margin
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    async def acquire(self) -> None:
        """Wait until one more request may be issued, then record it."""
        while True:
            now = self._clock()
            self._prune(now)

            if len(self._timestamps) < self.max_requests_per_window:
                break

            wait_time = self._timestamps[0] + self.window_seconds - now + self.safety_margin
            log.warning(
                "Rate limit reached, waiting",
                wait_seconds=round(wait_time, 3),
                max_requests=self.max_requests_per_window,
            )
            await self._sleep(wait_time)

        if self._timestamps:
            since_last = self._clock() - self._timestamps[-1]
            if since_last < self.min_delay_seconds:
                delay = self.min_delay_seconds - since_last
                log.debug("Rate limiting: sleeping", sleep_time=round(delay, 3))
                await self._sleep(delay)

        self._timestamps.append(self._clock())

    def request_count_in_window(self) -> int:
        """Number of recorded requests still inside the window."""
        self._prune(self._clock())
        return len(self._timestamps)

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()
