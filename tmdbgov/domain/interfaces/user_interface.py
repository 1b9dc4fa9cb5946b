"""Interface for interacting with the user (output only).

Defines the contract for displaying responses, progress, statistics,
errors and warnings, allowing different UI implementations
(e.g., console, tests).
"""

import abc
from typing import Any, Dict, List

from tmdbgov.domain.models.common import GovernorStatus, StatsSnapshot

class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_json(self, payload: Any, **kwargs: Any) -> None:
        """Displays a JSON response body.

        Args:
            payload: The parsed JSON body.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_progress(self, stream_id: str, loaded: int, total: int, approx_count: int) -> None:
        """Displays progress of a streaming session.

        Args:
            stream_id: Session identifier.
            loaded: Pages loaded so far.
            total: Total pages of the session.
            approx_count: Approximate number of items loaded.
        """
        pass

    @abc.abstractmethod
    def display_stats(self, stats: StatsSnapshot) -> None:
        """Displays request statistics."""
        pass

    def display_status(self, status: GovernorStatus) -> None:
        """Displays the dispatch loop status. Optional for implementations."""
        pass

    def display_settings(self, settings: Dict[str, Any]) -> None:
        """Displays effective configuration. Optional for implementations."""
        pass

    def display_items(self, items: List[Dict[str, Any]], limit: int = 20) -> None:
        """Displays a table of normalized movie items. Optional for implementations."""
        pass
