"""Error taxonomy of the request governor.

Single requests fail by rejecting their future with one of these types;
streaming sessions deliver them to ``on_error`` instead of raising.
"""

from typing import Optional


class GovernorError(Exception):
    """Base class for every failure surfaced by the governor."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class RequestTimeoutError(GovernorError):
    """An attempt exceeded its deadline. Retried within budget, then surfaced."""

    def __init__(self, url: str, timeout_ms: float):
        self.timeout_ms = timeout_ms
        super().__init__(f"Request timeout after {_format_ms(timeout_ms)}ms", url=url)


class RateLimitExhaustedError(GovernorError):
    """The provider kept answering 429 until the retry budget ran out."""

    def __init__(self, url: str, attempts: int):
        self.attempts = attempts
        super().__init__("TMDb rate limit exceeded - please try again later", url=url)


class TransportError(GovernorError):
    """DNS, connection or generic fetch failure. Never retried by the governor."""


class HttpStatusError(TransportError):
    """Non-2xx, non-429 response from the provider."""

    def __init__(self, url: str, status_code: int):
        self.status_code = status_code
        super().__init__(f"TMDb API error: {status_code}", url=url)


class RequestCancelledError(GovernorError):
    """The request or its containing stream was explicitly cancelled."""

    def __init__(self, url: Optional[str] = None, reason: str = "Request cancelled"):
        self.reason = reason
        super().__init__(reason, url=url)


class QueueClearedError(RequestCancelledError):
    """Raised into every queued and in-flight request by ``clear_all``."""

    def __init__(self, url: Optional[str] = None):
        super().__init__(url=url, reason="Request queue cleared")


class InvalidConfigurationError(GovernorError, ValueError):
    """Synchronous validation failure of a setter or constructor argument."""


def _format_ms(value: float) -> str:
    # 100.0 -> "100", 12.5 -> "12.5"
    return str(int(value)) if float(value).is_integer() else str(value)
