"""Cancellation token passed through the call chain of one request attempt."""

import asyncio
from typing import Optional


class CancellationToken:
    """One-shot cancellation signal shared by the governor and the transport.

    The token is bound lazily to the running loop, so it can be created from
    synchronous code (e.g. while a descriptor is being dequeued).
    """

    def __init__(self) -> None:
        self._event: Optional[asyncio.Event] = None
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signals cancellation. Only the first reason is kept."""
        if self._reason is not None:
            return
        self._reason = reason
        if self._event is not None:
            self._event.set()

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._reason is not None:
                self._event.set()
        return self._event

    async def wait(self) -> None:
        """Blocks until the token is cancelled."""
        await self._get_event().wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleeps up to ``seconds``; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})"
