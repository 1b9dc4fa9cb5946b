"""Domain models for queued and in-flight requests.

Includes the request descriptor owned by the dispatch loop and the
transport-neutral response returned by an HttpTransport.
"""

import asyncio
import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .cancellation import CancellationToken
from .common import JsonBody, RequestId, StreamId, Url


class RequestKind(str, enum.Enum):
    """What produced a descriptor."""
    SINGLE = "single"
    STREAM_PAGE = "stream_page"


@dataclass(eq=False)
class RequestDescriptor:
    """One queued or in-flight call.

    Owned by exactly one of {queue, in-flight slot}. Once its future is
    settled it is dropped and never reused.
    """
    url: Url
    future: "asyncio.Future[JsonBody]"
    retries_remaining: int
    timeout_ms: float
    kind: RequestKind = RequestKind.SINGLE
    stream_id: Optional[StreamId] = None
    page: Optional[int] = None
    cancellable: bool = False
    request_id: Optional[RequestId] = None
    enqueued_at: float = field(default_factory=time.monotonic)
    started_at: Optional[float] = None  # Reset on every attempt
    attempts: int = 0
    token: CancellationToken = field(default_factory=CancellationToken)
    on_rate_limited: Optional[Callable[[float], None]] = None

    @property
    def settled(self) -> bool:
        return self.future.done()

    def new_attempt(self) -> CancellationToken:
        """Starts a fresh attempt: new token, fresh clock."""
        self.attempts += 1
        self.token = CancellationToken()
        self.started_at = time.monotonic()
        return self.token

    def elapsed_ms(self) -> float:
        start = self.started_at if self.started_at is not None else self.enqueued_at
        return (time.monotonic() - start) * 1000


@dataclass
class TransportResponse:
    """HTTP response as seen by the governor."""
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""

    def __post_init__(self) -> None:
        # Header lookups are case-insensitive
        self.headers = {str(k).lower(): str(v) for k, v in dict(self.headers).items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        """Parses the body as JSON. Raises ValueError on malformed content."""
        return json.loads(self.content.decode("utf-8") if self.content else "null")

    @classmethod
    def from_json(cls, payload: Any, status_code: int = 200,
                  headers: Optional[Dict[str, str]] = None) -> "TransportResponse":
        return cls(status_code=status_code, headers=headers or {},
                   content=json.dumps(payload).encode("utf-8"))
