"""Retry and backoff policy for governed requests.

Decides which failures are transient (429 and timeouts) and computes how
long the dispatch loop backs off after a 429, preferring the provider's
Retry-After hint over an exponential schedule.
"""

import enum
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Tuple

from tmdbgov.domain.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF_S = 1.0
DEFAULT_MAX_BACKOFF_MS = 8000
# Exponent ceiling of the schedule: with the default budget of 3 retries the
# first 429 waits 2s, then 4s, then 8s (capped).
BACKOFF_EXPONENT_BASE = 4


class FailureKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"


RETRYABLE_FAILURES = frozenset({FailureKind.RATE_LIMITED, FailureKind.TIMEOUT})


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parses a Retry-After header into seconds.

    Accepts delta-seconds ("3") or an HTTP-date. Returns None when missing
    or unparseable; negative values clamp to zero.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - current).total_seconds())


class RetryPolicy:
    """Classifies failures and computes 429 backoff delays."""

    def __init__(
        self,
        max_backoff_ms: float = DEFAULT_MAX_BACKOFF_MS,
        initial_backoff_s: float = DEFAULT_INITIAL_BACKOFF_S,
        exponent_base: int = BACKOFF_EXPONENT_BASE,
    ):
        if isinstance(max_backoff_ms, bool) or not isinstance(max_backoff_ms, (int, float)) or max_backoff_ms <= 0:
            raise InvalidConfigurationError(f"Max backoff must be a positive number, got {max_backoff_ms!r}")
        if initial_backoff_s <= 0:
            raise InvalidConfigurationError("Initial backoff must be positive")
        self.max_backoff_s = max_backoff_ms / 1000.0
        self.initial_backoff_s = initial_backoff_s
        self.exponent_base = exponent_base

    def is_retryable(self, kind: FailureKind) -> bool:
        return kind in RETRYABLE_FAILURES

    def should_retry(self, kind: FailureKind, retries_remaining: int) -> bool:
        """True if the failure is transient and the budget is not spent."""
        return self.is_retryable(kind) and retries_remaining > 0

    def exponential_delay(self, retries_remaining: int) -> float:
        """Delay in seconds derived from the remaining retry budget, capped."""
        exponent = self.exponent_base - retries_remaining
        return min(self.initial_backoff_s * (2 ** exponent), self.max_backoff_s)

    def backoff_delay(self, retry_after: Optional[str], retries_remaining: int) -> Tuple[float, bool]:
        """Computes the 429 backoff.

        Returns:
            (delay_seconds, from_server_hint). A server hint is honored as
            given; only the exponential schedule is capped.
        """
        hinted = parse_retry_after(retry_after)
        if hinted is not None:
            return hinted, True
        return self.exponential_delay(retries_remaining), False
