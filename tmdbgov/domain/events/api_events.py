"""Domain Events related to governed API calls and streaming sessions.

Examples include events for when calls are queued, deferred, retried,
fail, or succeed, and for the lifecycle of streaming sessions.
"""

from dataclasses import dataclass, field
import time
from typing import Optional

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Request Events ---

@dataclass
class RequestQueued(DomainEvent):
    """Event triggered when a descriptor enters the queue."""
    url: str
    kind: str  # 'single' or 'stream_page'
    queue_length: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestDeferred(DomainEvent):
    """Event triggered when a dispatch is delayed by the rate limiter."""
    url: str
    wait_time_seconds: float
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestDispatched(DomainEvent):
    """Event triggered when an attempt is sent to the transport."""
    url: str
    attempt_number: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestSucceeded(DomainEvent):
    """Event triggered when an attempt returns a 2xx response."""
    url: str
    latency_ms: float
    attempt_number: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestFailed(DomainEvent):
    """Event triggered when a request fails definitively (after retries)."""
    url: str
    error_type: str
    error_message: str
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RateLimitBackoff(DomainEvent):
    """Event triggered when the provider answered 429 and the loop backs off."""
    url: str
    delay_seconds: float
    from_retry_after: bool
    retries_remaining: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a failed attempt is re-admitted to the queue."""
    url: str
    reason: str  # 'timeout' or 'rate_limited'
    attempt_number: int
    retries_remaining: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class TimeoutWarningIssued(DomainEvent):
    """Event triggered when an attempt crosses the early-warning threshold."""
    url: str
    elapsed_ms: float
    timeout_ms: float
    percentage: float
    timestamp: float = field(default_factory=time.time)

# --- Streaming Events ---

@dataclass
class StreamStarted(DomainEvent):
    """Event triggered when a streaming session enqueues its pages."""
    stream_id: str
    total_pages: int
    pages_enqueued: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class StreamCompleted(DomainEvent):
    """Event triggered when every page of a session has loaded."""
    stream_id: str
    total_pages: int
    duration_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class StreamCancelled(DomainEvent):
    """Event triggered when a session is cancelled."""
    stream_id: str
    loaded_pages: int
    purged_pages: int
    timestamp: float = field(default_factory=time.time)
