"""Concrete implementation of the HttpTransport interface using httpx.

Hides the specifics of the httpx client and translates its responses
and errors into the governor's domain types.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from tmdbgov.domain.errors import RequestCancelledError, TransportError
from tmdbgov.domain.interfaces.http_transport import HttpTransport
from tmdbgov.domain.models.cancellation import CancellationToken
from tmdbgov.domain.models.common import Url
from tmdbgov.domain.models.requests import TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
}

class HttpxTransport(HttpTransport):
    """httpx implementation of the HttpTransport interface."""

    def __init__(self, user_agent: str = "tmdbgov/0.1", client: Optional[httpx.AsyncClient] = None):
        """Initializes the transport.

        Args:
            user_agent: User-Agent header sent with every request.
            client: Optional pre-built client (shared pools, tests). When
                given, the caller owns its lifetime.
        """
        self.user_agent = user_agent
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(**self._client_kwargs())
        logger.info(f"HttpxTransport initialized (user agent: {user_agent})")

    def _client_kwargs(self) -> Dict[str, Any]:
        return {
            # Deadlines are enforced by the governor's timeout controller
            "timeout": httpx.Timeout(None),
            "headers": {**DEFAULT_HEADERS, "User-Agent": self.user_agent},
            "follow_redirects": True,
        }

    async def get(self, url: Url, token: CancellationToken) -> TransportResponse:
        if token.cancelled:
            raise RequestCancelledError(url=url, reason=token.reason or "Request cancelled")
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"TMDb request failed: {url}: {type(e).__name__}: {e}")
            raise TransportError(f"Network error: {e}" if str(e) else f"Network error: {type(e).__name__}", url=url) from e
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
