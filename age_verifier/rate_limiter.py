"""
Rate limiter implementation using sliding window algorithm.

Keeps outbound lookups within the account-history API's limits:
- Several sliding windows (per minute, per 10 seconds, per second by default)
- A fixed minimum interval between consecutive requests
- Exponential backoff on errors, longer for rate-limit responses
"""

import time
import random
import asyncio
import logging
from collections import deque
from typing import Optional, Sequence, Tuple, Callable, Awaitable, List


class SlidingWindowRateLimiter:
    """
    Sliding window rate limiter for outbound API requests.

    Each window is a (max_requests, seconds) pair; a request may proceed only
    when every window has room and min_interval has elapsed since the last one.
    """

    def __init__(
        self,
        windows: Sequence[Tuple[int, float]] = ((60, 60.0), (15, 10.0), (3, 1.0)),
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize rate limiter.

        Args:
            windows: (max_requests, window_seconds) pairs
            min_interval: Minimum seconds between consecutive requests
            clock: Monotonic time source
            sleep: Coroutine used to wait
        """
        self.windows = [(limit, float(seconds)) for limit, seconds in windows]
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep

        # One deque of request timestamps per window
        self.timestamps: List[deque] = [deque() for _ in self.windows]
        self.last_request: Optional[float] = None

        self.lock = asyncio.Lock()

        # Statistics
        self.total_requests = 0
        self.total_wait_time = 0.0
        self.requests_blocked = 0

        logging.debug(
            "Rate limiter initialized: "
            + ", ".join(f"{limit}/{seconds:g}s" for limit, seconds in self.windows)
            + f", min interval {min_interval:g}s"
        )

    @classmethod
    def from_config(cls, config) -> 'SlidingWindowRateLimiter':
        return cls(
            windows=(
                (config.rate_limit_per_minute, 60.0),
                (config.rate_limit_per_10s, 10.0),
                (config.rate_limit_per_1s, 1.0),
            ),
            min_interval=config.min_request_interval,
        )

    def _cleanup_window(self, window: deque, max_age: float, now: float):
        """Remove timestamps older than max_age from window."""
        cutoff = now - max_age

        while window and window[0] <= cutoff:
            window.popleft()

    def _get_wait_time(self) -> float:
        """
        Calculate how long to wait before next request is allowed.

        Returns:
            Wait time in seconds (0 if request can proceed immediately)
        """
        now = self.clock()
        wait_times = []

        for (limit, seconds), window in zip(self.windows, self.timestamps):
            self._cleanup_window(window, seconds, now)
            if len(window) >= limit:
                wait_times.append((window[0] + seconds) - now)

        if self.last_request is not None and self.min_interval > 0:
            wait_times.append((self.last_request + self.min_interval) - now)

        return max(wait_times) if wait_times else 0

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire permission to make a request.

        Blocks until a request slot is available or timeout is reached.

        Args:
            timeout: Maximum time to wait in seconds (None = wait indefinitely)

        Returns:
            True if acquired, False if timeout
        """
        start_time = self.clock()

        async with self.lock:
            while True:
                wait_time = self._get_wait_time()

                if wait_time <= 0:
                    now = self.clock()
                    for window in self.timestamps:
                        window.append(now)
                    self.last_request = now

                    self.total_requests += 1
                    self.total_wait_time += (now - start_time)
                    return True

                if timeout is not None:
                    elapsed = self.clock() - start_time
                    if elapsed + wait_time > timeout:
                        self.requests_blocked += 1
                        return False

                self.requests_blocked += 1
                logging.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await self.sleep(wait_time)

    def get_stats(self) -> dict:
        """
        Get rate limiter statistics.

        Returns:
            Dictionary with statistics
        """
        avg_wait = (
            self.total_wait_time / self.total_requests
            if self.total_requests > 0
            else 0
        )

        stats = {
            'total_requests': self.total_requests,
            'requests_blocked': self.requests_blocked,
            'avg_wait_time': avg_wait,
        }
        for (_, seconds), window in zip(self.windows, self.timestamps):
            stats[f'current_{seconds:g}s_count'] = len(window)
        return stats

    def reset(self):
        """Reset rate limiter state (for testing)."""
        for window in self.timestamps:
            window.clear()
        self.last_request = None
        self.total_requests = 0
        self.total_wait_time = 0.0
        self.requests_blocked = 0


class ExponentialBackoff:
    """
    Exponential backoff for retry logic.

    Implements exponential backoff with jitter for failed requests. Rate-limit
    failures use a multiplied delay and honour the server's Retry-After.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        rate_limit_multiplier: float = 4.0,
        jitter: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize exponential backoff.

        Args:
            base_delay: Initial delay in seconds
            max_delay: Maximum delay in seconds
            multiplier: Multiplier for each retry
            rate_limit_multiplier: Extra factor applied after a 429
            jitter: Whether to add random jitter
            sleep: Coroutine used to wait
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.rate_limit_multiplier = rate_limit_multiplier
        self.jitter = jitter
        self.sleep = sleep
        self.current_attempt = 0

    @classmethod
    def from_config(cls, config) -> 'ExponentialBackoff':
        return cls(
            base_delay=config.backoff_base_ms / 1000.0,
            max_delay=config.backoff_max_seconds,
            rate_limit_multiplier=config.rate_limit_backoff_multiplier,
        )

    def get_delay(self, rate_limited: bool = False, retry_after: Optional[float] = None) -> float:
        """
        Get delay for current attempt.

        Args:
            rate_limited: Whether the failure was a 429
            retry_after: Server-requested delay in seconds, if any

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.multiplier ** self.current_attempt)
        if rate_limited:
            delay *= self.rate_limit_multiplier
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Add random jitter (+/-25%)
            delay *= random.uniform(0.75, 1.25)

        if retry_after is not None:
            delay = max(delay, retry_after)

        return delay

    async def wait(self, rate_limited: bool = False, retry_after: Optional[float] = None):
        """Wait for the current backoff delay."""
        delay = self.get_delay(rate_limited, retry_after)
        logging.debug(f"Exponential backoff: waiting {delay:.2f}s (attempt {self.current_attempt})")
        await self.sleep(delay)
        self.current_attempt += 1

    def reset(self):
        """Reset backoff to initial state."""
        self.current_attempt = 0
