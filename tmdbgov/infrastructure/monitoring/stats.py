"""Request statistics: counters plus a bounded window of response times."""

import logging
from collections import deque
from typing import Deque

from tmdbgov.domain.errors import InvalidConfigurationError
from tmdbgov.domain.models.common import StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

class StatsCollector:
    """Tracks total requests, timeouts and the most recent response times.

    Derived values (average/min/max) are computed on read, never stored.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidConfigurationError(f"Stats capacity must be a positive integer, got {capacity!r}")
        self.capacity = capacity
        self.total_requests = 0
        self.timeout_count = 0
        self.response_times: Deque[float] = deque(maxlen=capacity)  # oldest evicted on overflow

    def record_success(self, response_time_ms: float) -> None:
        self.response_times.append(float(response_time_ms))
        self.total_requests += 1

    def record_timeout(self) -> None:
        self.total_requests += 1
        self.timeout_count += 1
        logger.debug(f"Timeout recorded ({self.timeout_count}/{self.total_requests} requests)")

    def snapshot(self) -> StatsSnapshot:
        samples = list(self.response_times)
        if samples:
            average = sum(samples) / len(samples)
            minimum, maximum = min(samples), max(samples)
        else:
            average = minimum = maximum = 0.0
        return StatsSnapshot(
            total_requests=self.total_requests,
            timeout_count=self.timeout_count,
            response_times=samples,
            average_response_time_ms=average,
            min_response_time_ms=minimum,
            max_response_time_ms=maximum,
        )
