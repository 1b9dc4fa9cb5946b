"""Timeout and cancellation controller for single request attempts.

Races the transport call against a deadline and against the attempt's
cancellation token. When the deadline wins, the transport task is
cancelled so the underlying connection is aborted rather than ignored.
"""

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tmdbgov.domain.errors import InvalidConfigurationError, RequestCancelledError, RequestTimeoutError
from tmdbgov.domain.models.cancellation import CancellationToken
from tmdbgov.domain.models.common import TimeoutWarningInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 30000
MAX_REASONABLE_TIMEOUT_MS = 5 * 60 * 1000
DEFAULT_WARNING_THRESHOLD = 0.8

TimeoutWarningCallback = Callable[[TimeoutWarningInfo], None]


def validate_duration_ms(value: object, name: str = "Timeout",
                         warn_above_ms: Optional[float] = None) -> float:
    """Validates a configured duration in milliseconds.

    Raises:
        InvalidConfigurationError: If the value is not a number or not positive.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise InvalidConfigurationError(f"{name} must be a number, got {value!r}")
    if value <= 0:
        raise InvalidConfigurationError(f"{name} must be positive, got {value!r}")
    if math.isinf(value):
        raise InvalidConfigurationError(f"{name} must be finite")
    if warn_above_ms is not None and value > warn_above_ms:
        logger.warning(
            f"Setting very long timeout: {name.lower()} of {value}ms exceeds {warn_above_ms}ms "
            f"and defeats the purpose of bounding request latency"
        )
    return value


def _consume_result(task: "asyncio.Future") -> None:
    # Abandoned tasks may still fail; read the exception so asyncio does not report it.
    if not task.cancelled():
        task.exception()


class TimeoutController:
    """Runs one attempt under a deadline, with an optional early warning."""

    def __init__(self, warning_threshold: float = DEFAULT_WARNING_THRESHOLD):
        self.warning_enabled = False
        self.warning_callback: Optional[TimeoutWarningCallback] = None
        self.warning_threshold = warning_threshold

    def configure_warning(self, enabled: bool, callback: Optional[TimeoutWarningCallback] = None,
                          threshold: Optional[float] = None) -> None:
        if threshold is not None:
            if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 < threshold < 1:
                raise InvalidConfigurationError(f"Warning threshold must be between 0 and 1, got {threshold!r}")
            self.warning_threshold = float(threshold)
        self.warning_enabled = bool(enabled)
        self.warning_callback = callback if enabled else None

    def _fire_warning(self, url: str, timeout_ms: float, started: float,
                      on_warning: Optional[Callable[[TimeoutWarningInfo], None]]) -> None:
        elapsed_ms = (time.monotonic() - started) * 1000
        info = TimeoutWarningInfo(
            url=url,
            elapsed_ms=elapsed_ms,
            timeout_ms=timeout_ms,
            percentage=round(elapsed_ms / timeout_ms * 100, 1),
        )
        logger.warning(f"Slow TMDb request: {url} at {info['percentage']}% of its {timeout_ms}ms timeout")
        for callback in (self.warning_callback, on_warning):
            if callback is None:
                continue
            try:
                callback(info)
            except Exception as e:
                logger.error(f"Timeout warning callback failed: {e}", exc_info=True)

    async def run(
        self,
        call: Callable[[CancellationToken], Awaitable[T]],
        url: str,
        timeout_ms: float,
        token: CancellationToken,
        on_warning: Optional[Callable[[TimeoutWarningInfo], None]] = None,
    ) -> T:
        """Runs ``call(token)`` under a ``timeout_ms`` deadline.

        Args:
            call: Coroutine function performing the network call.
            url: URL of the attempt (for errors and warnings).
            timeout_ms: Deadline of this attempt.
            token: Cancellation token of this attempt.
            on_warning: Extra per-call warning hook (used for events).

        Returns:
            Whatever ``call`` returns.

        Raises:
            RequestTimeoutError: If the deadline passed first.
            RequestCancelledError: If the token was cancelled first.
        """
        if token.cancelled:
            raise RequestCancelledError(url=url, reason=token.reason or "Request cancelled")

        loop = asyncio.get_running_loop()
        started = time.monotonic()
        call_task = asyncio.ensure_future(call(token))
        cancel_waiter = asyncio.ensure_future(token.wait())
        warning_handle = None
        if self.warning_enabled or on_warning is not None:
            warning_handle = loop.call_later(
                timeout_ms / 1000.0 * self.warning_threshold,
                self._fire_warning, url, timeout_ms, started, on_warning,
            )
        try:
            done, _ = await asyncio.wait(
                {call_task, cancel_waiter},
                timeout=timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if call_task in done:
                return call_task.result()
            if cancel_waiter in done:
                logger.info(f"Request cancelled while in flight: {url} ({token.reason})")
                raise RequestCancelledError(url=url, reason=token.reason or "Request cancelled")
            token.cancel("timeout")
            logger.warning(f"TMDb request timed out after {timeout_ms}ms: {url}")
            raise RequestTimeoutError(url, timeout_ms)
        finally:
            # Timer is cleared before the outcome reaches the caller
            if warning_handle is not None:
                warning_handle.cancel()
            cancel_waiter.cancel()
            if not call_task.done():
                call_task.cancel()
                call_task.add_done_callback(_consume_result)
