"""Interface for the network-fetch primitive used by the governor.

Defines the contract for performing a single GET against the provider
while honoring a cancellation token, so that different HTTP stacks (or
test doubles) can be plugged into the dispatch loop.
"""

import abc

from ..models.cancellation import CancellationToken
from ..models.common import Url
from ..models.requests import TransportResponse


class HttpTransport(abc.ABC):
    """Abstract Base Class for outbound HTTP calls."""

    @abc.abstractmethod
    async def get(self, url: Url, token: CancellationToken) -> TransportResponse:
        """Performs one GET request asynchronously.

        The governor cancels the awaiting task when the deadline passes or the
        token is triggered; implementations must let that cancellation abort
        the underlying connection.

        Args:
            url: Fully built endpoint URL.
            token: Cancellation token of the current attempt.

        Returns:
            The response, whatever its status code.

        Raises:
            TransportError: On DNS, connection or protocol failures.
            RequestCancelledError: If the token was already cancelled.
        """
        pass

    async def aclose(self) -> None:
        """Releases pooled connections. Optional for implementations."""
        pass
