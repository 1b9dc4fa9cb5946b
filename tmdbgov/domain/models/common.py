"""Defines common Value Objects used across the governor.

These objects represent simple values like URLs, identifiers and
JSON bodies, keeping signatures readable and consistent.
"""

from typing import Any, Dict, List, NewType, Optional, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
Url = NewType("Url", str)                  # Fully built TMDb endpoint URL (opaque to the governor)
RequestId = NewType("RequestId", str)      # Caller-chosen id used to cancel a request
StreamId = NewType("StreamId", str)        # Caller-chosen id of a bulk streaming session
JsonBody = NewType("JsonBody", Any)        # Parsed JSON payload returned to callers

# TMDb paginates list endpoints in pages of 20 results.
TMDB_PAGE_SIZE = 20

# --- Structured Data ---

class TimeoutWarningInfo(TypedDict):
    """Payload handed to the early-warning callback of a slow request."""
    url: str
    elapsed_ms: float
    timeout_ms: float
    percentage: float

class StatsSnapshot(TypedDict):
    """Point-in-time view of request statistics."""
    total_requests: int
    timeout_count: int
    response_times: List[float]
    average_response_time_ms: float
    min_response_time_ms: float
    max_response_time_ms: float

class StreamStatus(TypedDict):
    """Status row of one active streaming session."""
    id: str
    progress: str  # "loaded/total"
    cancelled: bool

class GovernorStatus(TypedDict):
    """Snapshot of the dispatch loop."""
    queue_length: int
    is_dispatching: bool
    active_streams: List[StreamStatus]
    last_dispatch_at: Optional[float]  # wall clock (time.time()), None before the first dispatch

class GovernorSettings(TypedDict):
    """Value Object representing governor tuning loaded from configuration."""
    timeout_ms: float
    max_timeout_ms: float
    min_interval_ms: float
    max_backoff_ms: float
    default_retries: int
    stats_capacity: int
    retry_priority: str  # 'head' or 'fifo'
    timeout_warning_enabled: bool
    timeout_warning_threshold: float

MovieItem = Dict[str, Any]
