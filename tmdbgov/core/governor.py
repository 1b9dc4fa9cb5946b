"""Request governor: the single dispatch loop in front of the TMDb API.

Callers enqueue requests (or start streaming sessions); one worker task
drains the queue, spacing dispatches with the rate limiter, racing each
attempt against its deadline, and handing 429s and timeouts to the retry
policy, which may re-admit the item at the head of the queue.
"""

import asyncio
import functools
import logging
import time
import uuid
from typing import Any, Callable, List, Optional

from tmdbgov.core.streaming import StreamingSessionManager
from tmdbgov.domain.errors import (
    GovernorError,
    HttpStatusError,
    InvalidConfigurationError,
    QueueClearedError,
    RateLimitExhaustedError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
)
from tmdbgov.domain.events.api_events import (
    DomainEvent,
    RateLimitBackoff,
    RequestDeferred,
    RequestDispatched,
    RequestFailed,
    RequestQueued,
    RequestSucceeded,
    RetryScheduled,
    TimeoutWarningIssued,
)
from tmdbgov.domain.interfaces.http_transport import HttpTransport
from tmdbgov.domain.models.common import (
    GovernorStatus,
    JsonBody,
    RequestId,
    StatsSnapshot,
    StreamId,
    TimeoutWarningInfo,
    Url,
)
from tmdbgov.domain.models.requests import RequestDescriptor, RequestKind, TransportResponse
from tmdbgov.domain.models.streaming import StreamCallbacks
from tmdbgov.infrastructure.monitoring.stats import DEFAULT_CAPACITY, StatsCollector
from tmdbgov.infrastructure.resilience.backoff import DEFAULT_MAX_BACKOFF_MS, FailureKind, RetryPolicy
from tmdbgov.infrastructure.resilience.rate_limiter import DEFAULT_MIN_INTERVAL_MS, RateLimiter
from tmdbgov.infrastructure.resilience.request_queue import RequestQueue, RetryPriorityQueue
from tmdbgov.infrastructure.resilience.timeout_controller import (
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WARNING_THRESHOLD,
    MAX_REASONABLE_TIMEOUT_MS,
    TimeoutController,
    TimeoutWarningCallback,
    validate_duration_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3

EventListener = Callable[[DomainEvent], None]


class RequestGovernor:
    """Rate-limited, retrying, cancellable request queue for one process.

    Construct one per event loop; there is no shared module-level instance.
    """

    def __init__(
        self,
        transport: HttpTransport,
        *,
        default_timeout_ms: float = DEFAULT_TIMEOUT_MS,
        max_timeout_ms: float = MAX_REASONABLE_TIMEOUT_MS,
        min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS,
        max_backoff_ms: float = DEFAULT_MAX_BACKOFF_MS,
        default_retries: int = DEFAULT_RETRIES,
        stats_capacity: int = DEFAULT_CAPACITY,
        queue: Optional[RequestQueue] = None,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        event_listener: Optional[EventListener] = None,
    ):
        """Initializes the governor.

        Args:
            transport: Network-fetch primitive.
            default_timeout_ms: Deadline of an attempt when none is given per request.
            max_timeout_ms: Sanity ceiling; longer timeouts are accepted with a warning.
            min_interval_ms: Minimum spacing between two dispatches.
            max_backoff_ms: Cap of the exponential 429 backoff.
            default_retries: Retry budget when none is given per request.
            stats_capacity: Number of response-time samples kept.
            queue: Retry re-admission policy (defaults to RetryPriorityQueue).
            warning_threshold: Fraction of the timeout at which slow requests warn.
            event_listener: Optional sink for domain events.

        Raises:
            InvalidConfigurationError: If any duration or count is invalid.
        """
        self.max_timeout_ms = validate_duration_ms(max_timeout_ms, name="Max timeout")
        self.default_timeout = validate_duration_ms(
            default_timeout_ms, name="Timeout", warn_above_ms=self.max_timeout_ms
        )
        self.default_retries = self._validate_retries(default_retries)
        self.transport = transport
        self.rate_limiter = RateLimiter(min_interval_ms=min_interval_ms)
        self.retry_policy = RetryPolicy(max_backoff_ms=max_backoff_ms)
        self.timeouts = TimeoutController(warning_threshold=warning_threshold)
        self.stats = StatsCollector(capacity=stats_capacity)
        self.queue: RequestQueue = queue if queue is not None else RetryPriorityQueue()
        self.streams = StreamingSessionManager(self)
        self.event_listener = event_listener

        self._in_flight: Optional[RequestDescriptor] = None
        self._dispatching = False
        self._worker: Optional["asyncio.Task[None]"] = None
        self._generation = 0  # bumped by clear_all so an old worker never touches new state

        logger.info(
            f"RequestGovernor initialized: timeout={self.default_timeout}ms, "
            f"min_interval={min_interval_ms}ms, max_backoff={max_backoff_ms}ms, "
            f"retries={self.default_retries}, retry policy='{self.queue.name}'"
        )

    # --- Configuration ---

    @staticmethod
    def _validate_retries(retries: Any) -> int:
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
            raise InvalidConfigurationError(f"Retries must be a non-negative integer, got {retries!r}")
        return retries

    def set_timeout(self, ms: float) -> None:
        """Sets the default per-attempt timeout.

        Raises:
            InvalidConfigurationError: If ``ms`` is not a positive number.
        """
        self.default_timeout = validate_duration_ms(ms, name="Timeout", warn_above_ms=self.max_timeout_ms)
        logger.info(f"Default TMDb request timeout set to {self.default_timeout}ms")

    def set_timeout_warning(self, enabled: bool, callback: Optional[TimeoutWarningCallback] = None,
                            threshold: Optional[float] = None) -> None:
        """Enables or disables the early warning for slow requests."""
        self.timeouts.configure_warning(enabled, callback, threshold)
        logger.info(
            f"Timeout warnings {'enabled' if enabled else 'disabled'} "
            f"(threshold {self.timeouts.warning_threshold:.0%})"
        )

    # --- Public API ---

    def queue_request(
        self,
        url: str,
        retries: Optional[int] = None,
        timeout_ms: Optional[float] = None,
        cancellable: bool = False,
        request_id: Optional[str] = None,
    ) -> "asyncio.Future[JsonBody]":
        """Queues a GET request and returns the future of its parsed JSON body.

        Must be called from a running event loop.

        Raises:
            InvalidConfigurationError: Synchronously, for an invalid timeout or retry budget.
        """
        loop = asyncio.get_running_loop()
        retries = self.default_retries if retries is None else self._validate_retries(retries)
        if timeout_ms is None:
            timeout_ms = self.default_timeout
        else:
            timeout_ms = validate_duration_ms(timeout_ms, name="Timeout", warn_above_ms=self.max_timeout_ms)
        if cancellable and request_id is None:
            request_id = uuid.uuid4().hex
            logger.debug(f"Generated request id {request_id} for cancellable request {url}")

        descriptor = RequestDescriptor(
            url=Url(url),
            future=loop.create_future(),
            retries_remaining=retries,
            timeout_ms=timeout_ms,
            kind=RequestKind.SINGLE,
            cancellable=cancellable,
            request_id=RequestId(request_id) if request_id is not None else None,
        )
        self.enqueue(descriptor)
        return descriptor.future

    def start_streaming_load(self, base_url: str, total_pages: int, stream_id: str,
                             callbacks: Optional[StreamCallbacks] = None,
                             pages_already_loaded: int = 0) -> None:
        """Starts a bulk fetch job; every outcome arrives through ``callbacks``."""
        self.streams.start_session(base_url, total_pages, stream_id, callbacks or StreamCallbacks(),
                                   pages_already_loaded=pages_already_loaded)

    def cancel_stream(self, stream_id: str) -> bool:
        return self.streams.cancel_session(StreamId(stream_id))

    async def wait_for_stream(self, stream_id: str) -> None:
        """Waits until a session completes, is cancelled, or all its pages settle."""
        await self.streams.wait_closed(StreamId(stream_id))

    def cancel_request(self, request_id: str) -> bool:
        """Cancels a cancellable request by id.

        A queued request is removed and failed immediately; the in-flight
        request has its token triggered and is settled by the dispatch loop.

        Returns:
            True if a matching cancellable request was found.
        """
        def matches(item: RequestDescriptor) -> bool:
            return item.cancellable and item.request_id == request_id

        removed = self.queue.remove_where(matches)
        for item in removed:
            logger.info(f"Cancelled queued request {request_id}: {item.url}")
            self._reject(item, RequestCancelledError(url=item.url))
        if removed:
            return True

        in_flight = self._in_flight
        if in_flight is not None and matches(in_flight) and not in_flight.settled:
            logger.info(f"Cancelling in-flight request {request_id}: {in_flight.url}")
            in_flight.token.cancel("Request cancelled")
            return True

        logger.debug(f"No cancellable request found for id {request_id}")
        return False

    def get_stats(self) -> StatsSnapshot:
        return self.stats.snapshot()

    def get_status(self) -> GovernorStatus:
        return GovernorStatus(
            queue_length=len(self.queue),
            is_dispatching=self._dispatching,
            active_streams=self.streams.status(),
            last_dispatch_at=self.rate_limiter.last_dispatch_at,
        )

    def clear_all(self) -> None:
        """Fails all queued and in-flight work, cancels sessions and goes idle."""
        self._generation += 1
        self.streams.cancel_all()

        cleared = self.queue.drain()
        for item in cleared:
            self._reject(item, QueueClearedError(url=item.url))

        in_flight = self._in_flight
        if in_flight is not None:
            in_flight.token.cancel("Request queue cleared")
            self._reject(in_flight, QueueClearedError(url=in_flight.url))
            self._in_flight = None

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
        self._dispatching = False
        logger.info(f"Request queue cleared ({len(cleared)} queued, {'1' if in_flight else '0'} in flight)")

    async def aclose(self) -> None:
        """Clears all work and releases the transport."""
        self.clear_all()
        await self.transport.aclose()

    # --- Queue plumbing (also used by the streaming manager) ---

    def enqueue(self, descriptor: RequestDescriptor) -> None:
        """Appends a descriptor at the tail and makes sure the loop runs."""
        self.queue.push(descriptor)
        self.emit_event(RequestQueued(
            url=descriptor.url, kind=descriptor.kind.value,
            queue_length=len(self.queue), request_id=descriptor.request_id,
        ))
        self._ensure_dispatching()

    def purge(self, predicate: Callable[[RequestDescriptor], bool]) -> List[RequestDescriptor]:
        """Removes queued (not yet dispatched) descriptors matching ``predicate``."""
        return self.queue.remove_where(predicate)

    @property
    def in_flight(self) -> Optional[RequestDescriptor]:
        return self._in_flight

    def _ensure_dispatching(self) -> None:
        if self._dispatching:
            return
        self._dispatching = True
        self._worker = asyncio.get_running_loop().create_task(self._dispatch_loop(self._generation))

    async def _dispatch_loop(self, generation: int) -> None:
        logger.debug("Dispatch loop started")
        try:
            while generation == self._generation:
                item = self.queue.pop()
                if item is None:
                    break
                retry = False
                self._in_flight = item
                try:
                    retry = await self._dispatch(item)
                except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error dispatching {item.url}: {e}", exc_info=True)
                    self._reject(item, TransportError(f"Unexpected dispatch error: {e}", url=item.url))
                finally:
                    if self._in_flight is item:
                        self._in_flight = None
                if retry and generation == self._generation and not item.settled:
                    self.queue.push_retry(item)
        finally:
            if generation == self._generation:
                self._dispatching = False
                self._worker = None
                logger.debug("Dispatch loop idle")

    async def _dispatch(self, item: RequestDescriptor) -> bool:
        """Runs one attempt of ``item``.

        Returns:
            True if the item should be re-admitted for another attempt.
        """
        if item.settled:
            logger.debug(f"Skipping already settled request: {item.url}")
            return False

        token = item.new_attempt()
        wait = self.rate_limiter.get_wait_time()
        if wait > 0:
            self.emit_event(RequestDeferred(url=item.url, wait_time_seconds=wait, request_id=item.request_id))
        await self.rate_limiter.wait_for_permission()
        if token.cancelled or item.settled:
            self._reject(item, RequestCancelledError(url=item.url, reason=token.reason or "Request cancelled"))
            return False

        item.started_at = time.monotonic()  # clock starts after the rate-limit wait
        self.emit_event(RequestDispatched(url=item.url, attempt_number=item.attempts, request_id=item.request_id))

        try:
            response = await self.timeouts.run(
                functools.partial(self.transport.get, item.url), item.url, item.timeout_ms, token,
                on_warning=self._on_timeout_warning if self.timeouts.warning_enabled else None,
            )
        except RequestTimeoutError as e:
            self.stats.record_timeout()
            return self._retry_or_fail(item, FailureKind.TIMEOUT, e)
        except GovernorError as e:
            # Cancellation and transport failures are never retried here
            self._reject(item, e)
            return False
        except Exception as e:
            # Anything the transport raises that is not ours is a transport failure
            logger.error(f"TMDb request failed: {item.url}: {e}")
            self._reject(item, TransportError(str(e) or type(e).__name__, url=item.url))
            return False

        if response.status_code == 429:
            return await self._handle_rate_limited(item, response)

        if not response.ok:
            self._reject(item, HttpStatusError(item.url, response.status_code))
            return False

        try:
            body = response.json()
        except ValueError as e:
            self._reject(item, TransportError(f"Invalid JSON in TMDb response: {e}", url=item.url))
            return False

        latency_ms = item.elapsed_ms()
        self.stats.record_success(latency_ms)
        self.emit_event(RequestSucceeded(url=item.url, latency_ms=latency_ms,
                                         attempt_number=item.attempts, request_id=item.request_id))
        self._resolve(item, body)
        return False

    async def _handle_rate_limited(self, item: RequestDescriptor, response: TransportResponse) -> bool:
        delay, from_hint = self.retry_policy.backoff_delay(response.header("Retry-After"), item.retries_remaining)
        logger.warning(f"TMDb rate limit hit, backing off for {delay * 1000:.0f}ms ({item.url})")
        self.emit_event(RateLimitBackoff(url=item.url, delay_seconds=delay, from_retry_after=from_hint,
                                         retries_remaining=item.retries_remaining))
        if item.on_rate_limited is not None:
            try:
                item.on_rate_limited(delay)
            except Exception as e:
                logger.error(f"Rate-limit notification failed for {item.url}: {e}", exc_info=True)

        # Nothing is sent while over the limit; a cancellation settles the
        # caller right away but the loop still sits out the full delay.
        started = time.monotonic()
        if await item.token.sleep(delay):
            self._reject(item, RequestCancelledError(url=item.url, reason=item.token.reason or "Request cancelled"))
            remaining = delay - (time.monotonic() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)
            return False
        if item.settled:
            return False

        return self._retry_or_fail(item, FailureKind.RATE_LIMITED,
                                   RateLimitExhaustedError(item.url, item.attempts))

    def _retry_or_fail(self, item: RequestDescriptor, kind: FailureKind, error: GovernorError) -> bool:
        if self.retry_policy.should_retry(kind, item.retries_remaining):
            item.retries_remaining -= 1
            logger.warning(
                f"Retrying {item.url} after {kind.value} "
                f"(attempt {item.attempts}, {item.retries_remaining} retries left)"
            )
            self.emit_event(RetryScheduled(url=item.url, reason=kind.value, attempt_number=item.attempts,
                                           retries_remaining=item.retries_remaining, request_id=item.request_id))
            return True
        self._reject(item, error)
        return False

    def _on_timeout_warning(self, info: TimeoutWarningInfo) -> None:
        self.emit_event(TimeoutWarningIssued(url=info['url'], elapsed_ms=info['elapsed_ms'],
                                             timeout_ms=info['timeout_ms'], percentage=info['percentage']))

    # --- Settlement ---

    def _resolve(self, item: RequestDescriptor, body: JsonBody) -> None:
        if not item.settled:
            item.future.set_result(body)

    def _reject(self, item: RequestDescriptor, error: Exception) -> None:
        if item.settled:
            return
        if isinstance(error, RequestCancelledError):
            logger.info(f"TMDb request cancelled: {item.url}: {error}")
        elif item.kind is RequestKind.SINGLE:
            logger.error(f"TMDb request failed: {item.url}: {error}")
        self.emit_event(RequestFailed(url=item.url, error_type=type(error).__name__,
                                      error_message=str(error), request_id=item.request_id))
        item.future.set_exception(error)

    def emit_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is None:
            return
        try:
            self.event_listener(event)
        except Exception as e:
            logger.error(f"Event listener failed on {type(event).__name__}: {e}", exc_info=True)
