"""Implementation of a minimum-interval rate limiter.

Controls the frequency of outgoing requests to stay under the provider's
rate ceiling by spacing consecutive dispatches at least ``min_interval``
apart.
"""

import time
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL_MS = 25  # ~40 requests/second, safely under TMDb's ~50/sec

class RateLimiter:
    """Spaces dispatches by a fixed minimum interval."""

    def __init__(
        self,
        min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the rate limiter.

        Args:
            min_interval_ms: Minimum time between two dispatches, in milliseconds.
            clock: Monotonic clock returning seconds.
        """
        if isinstance(min_interval_ms, bool) or not isinstance(min_interval_ms, (int, float)) or min_interval_ms < 0:
            raise ValueError("Minimum interval must be a non-negative number.")
        self.min_interval = min_interval_ms / 1000.0
        self._clock = clock
        self.last_request_time: Optional[float] = None   # monotonic
        self.last_dispatch_at: Optional[float] = None    # wall clock, for status reports
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: min interval {min_interval_ms}ms")

    def get_wait_time(self) -> float:
        """Estimates the time (in seconds) needed before the next dispatch."""
        if self.last_request_time is None:
            return 0.0
        elapsed = self._clock() - self.last_request_time
        return max(0.0, self.min_interval - elapsed)

    async def wait_for_permission(self) -> float:
        """Waits until a dispatch is permitted and records it.

        Returns:
            The number of seconds actually waited.
        """
        async with self._lock:
            waited = 0.0
            wait_time = self.get_wait_time()
            # Loop again to re-check: the event loop may wake a timer slightly early
            while wait_time > 0:
                logger.debug(f"Rate limit spacing: waiting {wait_time * 1000:.1f}ms")
                await asyncio.sleep(wait_time)
                waited += wait_time
                wait_time = self.get_wait_time()
            self.last_request_time = self._clock()
            self.last_dispatch_at = time.time()
            return waited
