"""Streaming Session Manager: bulk, page-by-page fetch jobs.

A session enqueues one page descriptor per remaining page into the
governor's queue and fans the results back out to the consumer's
callbacks. Sessions never raise: page failures go to ``on_error`` and the
remaining pages keep loading unless the session is cancelled.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from tmdbgov.domain.errors import GovernorError, RequestCancelledError
from tmdbgov.domain.events.api_events import StreamCancelled, StreamCompleted, StreamStarted
from tmdbgov.domain.models.common import MovieItem, StreamId, StreamStatus, Url
from tmdbgov.domain.models.requests import RequestDescriptor, RequestKind
from tmdbgov.domain.models.streaming import (
    StreamCallbacks,
    StreamSession,
    build_page_url,
    normalize_movie,
    normalize_page,
)

if TYPE_CHECKING:
    from tmdbgov.core.governor import RequestGovernor

logger = logging.getLogger(__name__)


class StreamingSessionManager:
    """Tracks active sessions of one governor."""

    def __init__(
        self,
        governor: "RequestGovernor",
        normalizer: Callable[[Dict[str, Any]], MovieItem] = normalize_movie,
    ):
        self.governor = governor
        self.normalizer = normalizer
        self.sessions: Dict[StreamId, StreamSession] = {}

    # --- Lifecycle ---

    def start_session(self, base_url: str, total_pages: int, stream_id: str,
                      callbacks: StreamCallbacks, pages_already_loaded: int = 0) -> None:
        """Creates a session and enqueues its remaining pages.

        Pages ``pages_already_loaded + 1 .. total_pages`` are fetched; a
        caller that already loaded page 1 passes ``pages_already_loaded=1``.
        """
        stream_id = StreamId(stream_id)
        problem = self._validate(stream_id, total_pages, pages_already_loaded)
        if problem is not None:
            logger.error(f"Cannot start stream '{stream_id}': {problem}")
            self._invoke(callbacks.on_error, GovernorError(problem, url=base_url), hook="on_error")
            return

        session = StreamSession(
            stream_id=stream_id,
            base_url=Url(base_url),
            total_pages=total_pages,
            loaded_pages=pages_already_loaded,
            callbacks=callbacks,
        )
        self.sessions[stream_id] = session

        loop = asyncio.get_running_loop()
        first_page = pages_already_loaded + 1
        for page in range(first_page, total_pages + 1):
            descriptor = RequestDescriptor(
                url=build_page_url(base_url, page),
                future=loop.create_future(),
                retries_remaining=self.governor.default_retries,
                timeout_ms=self.governor.default_timeout,
                kind=RequestKind.STREAM_PAGE,
                stream_id=stream_id,
                page=page,
                on_rate_limited=lambda wait, s=session: self._on_rate_limited(s, wait),
            )
            descriptor.future.add_done_callback(
                lambda future, s=session, p=page: self._on_page_settled(s, p, future)
            )
            session.pending_pages += 1
            self.governor.enqueue(descriptor)

        logger.info(
            f"Stream '{stream_id}' started: {session.pending_pages} pages queued "
            f"({pages_already_loaded}/{total_pages} already loaded)"
        )
        self.governor.emit_event(StreamStarted(stream_id=stream_id, total_pages=total_pages,
                                                 pages_enqueued=session.pending_pages))
        if session.is_complete:
            self._complete(session)

    def _validate(self, stream_id: StreamId, total_pages: Any, pages_already_loaded: Any) -> Optional[str]:
        existing = self.sessions.get(stream_id)
        if existing is not None and not existing.cancelled:
            return "a stream with this id is already active"
        for name, value in (("total_pages", total_pages), ("pages_already_loaded", pages_already_loaded)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return f"{name} must be a non-negative integer, got {value!r}"
        if total_pages < 1:
            return "total_pages must be at least 1"
        if pages_already_loaded > total_pages:
            return "pages_already_loaded cannot exceed total_pages"
        return None

    def cancel_session(self, stream_id: StreamId) -> bool:
        """Cancels a session and purges its queued pages.

        The in-flight page of the session has its token triggered; whatever
        it settles with is dropped. A cancelled session no longer reserves
        its id, so a new session may reuse it at once.

        Returns:
            True if a session with this id was found.
        """
        session = self.sessions.get(stream_id)
        if session is None:
            logger.debug(f"No active stream '{stream_id}' to cancel")
            return False
        if session.cancelled:
            return True

        session.cancelled = True
        purged = self.governor.purge(
            lambda item: item.kind is RequestKind.STREAM_PAGE and item.stream_id == stream_id
        )
        for item in purged:
            # Drops silently: the session is cancelled, so the page callback ignores it
            item.future.set_exception(RequestCancelledError(url=item.url, reason="Stream cancelled"))

        in_flight = self.governor.in_flight
        if (in_flight is not None and in_flight.kind is RequestKind.STREAM_PAGE
                and in_flight.stream_id == stream_id and not in_flight.settled):
            # Aborts the transport call, or stops the page before it is sent
            in_flight.token.cancel("Stream cancelled")

        logger.info(f"Stream '{stream_id}' cancelled at {session.progress} ({len(purged)} queued pages purged)")
        self.governor.emit_event(StreamCancelled(stream_id=stream_id, loaded_pages=session.loaded_pages,
                                                   purged_pages=len(purged)))
        self._invoke(session.callbacks.on_cancelled, hook="on_cancelled")
        if session.pending_pages <= len(purged):
            # Nothing left in flight; the done-callbacks of purged pages will find it gone
            self._close(session)
        return True

    def cancel_all(self) -> None:
        for stream_id in list(self.sessions):
            self.cancel_session(stream_id)
        for session in list(self.sessions.values()):
            self._close(session)

    async def wait_closed(self, stream_id: StreamId) -> None:
        session = self.sessions.get(stream_id)
        if session is not None:
            await session.closed.wait()

    def status(self) -> List[StreamStatus]:
        return [
            StreamStatus(id=session.stream_id, progress=session.progress, cancelled=session.cancelled)
            for session in self.sessions.values()
        ]

    # --- Page results ---

    def _on_page_settled(self, session: StreamSession, page: int, future: "asyncio.Future[Any]") -> None:
        session.pending_pages -= 1
        error: Optional[BaseException]
        if future.cancelled():
            error = RequestCancelledError(url=build_page_url(session.base_url, page))
        else:
            error = future.exception()

        if session.cancelled or self.sessions.get(session.stream_id) is not session:
            logger.debug(f"Dropping page {page} of cancelled stream '{session.stream_id}'")
            if session.pending_pages <= 0:
                self._close(session)
            return

        if error is not None:
            logger.warning(f"Stream '{session.stream_id}' page {page} failed: {error}")
            self._invoke(session.callbacks.on_error, error, hook="on_error")
        else:
            items = normalize_page(future.result(), self.normalizer)
            session.loaded_pages = min(session.loaded_pages + 1, session.total_pages)
            self._invoke(session.callbacks.on_batch, items, hook="on_batch")
            self._invoke(session.callbacks.on_progress, session.loaded_pages, session.total_pages,
                         session.approx_count, hook="on_progress")

        if session.cancelled:
            # A consumer callback cancelled the session
            return
        if session.is_complete:
            self._complete(session)
        elif session.pending_pages <= 0:
            logger.warning(
                f"Stream '{session.stream_id}' finished incomplete at {session.progress}; "
                f"failed pages were reported through on_error"
            )
            self._close(session)

    def _on_rate_limited(self, session: StreamSession, wait_seconds: float) -> None:
        if session.cancelled:
            return
        logger.info(f"Stream '{session.stream_id}' rate limited, waiting {wait_seconds:.1f}s")
        self._invoke(session.callbacks.on_rate_limited, wait_seconds, hook="on_rate_limited")

    def _complete(self, session: StreamSession) -> None:
        duration = time.time() - session.started_at
        logger.info(f"Stream '{session.stream_id}' complete: {session.total_pages} pages in {duration:.1f}s")
        self.governor.emit_event(StreamCompleted(stream_id=session.stream_id, total_pages=session.total_pages,
                                                   duration_seconds=duration))
        self._close(session)
        self._invoke(session.callbacks.on_complete, hook="on_complete")

    def _close(self, session: StreamSession) -> None:
        if self.sessions.get(session.stream_id) is session:
            del self.sessions[session.stream_id]
        session.closed.set()

    def _invoke(self, callback: Optional[Callable[..., None]], *args: Any, hook: str) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Stream callback {hook} failed: {e}", exc_info=True)
