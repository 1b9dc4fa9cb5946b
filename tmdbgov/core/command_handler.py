"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), runs them through
the RequestGovernor and reports results, progress and failures through
the UserInterface.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from tmdbgov.core.governor import RequestGovernor
from tmdbgov.domain.errors import GovernorError, InvalidConfigurationError
from tmdbgov.domain.interfaces.user_interface import UserInterface
from tmdbgov.domain.models.common import TMDB_PAGE_SIZE, MovieItem
from tmdbgov.domain.models.streaming import StreamCallbacks, build_page_url, normalize_movie, normalize_page

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10

class CommandHandler:
    """Handles incoming commands and delegates to the governor."""

    def __init__(self, governor: RequestGovernor, ui: UserInterface):
        """Initializes the CommandHandler with the governor and the UI."""
        self.governor = governor
        self.ui = ui

    async def handle_fetch(self, url: str, timeout_ms: Optional[float] = None,
                           retries: Optional[int] = None) -> bool:
        """Handles the 'fetch' command: one governed GET, body and stats printed.

        Returns:
            True if the request succeeded.
        """
        logger.info(f"Handling 'fetch' command for: {url}")
        try:
            body = await self.governor.queue_request(url, retries=retries, timeout_ms=timeout_ms)
        except InvalidConfigurationError as e:
            self.ui.display_error(f"Invalid option: {e}")
            return False
        except GovernorError as e:
            logger.error(f"Fetch command failed: {e}")
            self.ui.display_error(f"Request failed: {e}")
            self.ui.display_stats(self.governor.get_stats())
            return False

        self.ui.display_json(body, title=url)
        self.ui.display_stats(self.governor.get_stats())
        return True

    async def handle_stream(self, base_url: str, pages: Optional[int] = None,
                            max_pages: int = DEFAULT_MAX_PAGES, stream_id: str = "cli") -> bool:
        """Handles the 'stream' command: a multi-page load with live progress.

        Without ``pages`` the first page is fetched to learn ``total_pages``
        (capped at ``max_pages``) and the remaining pages are streamed.

        Returns:
            True if every page loaded.
        """
        logger.info(f"Handling 'stream' command for: {base_url} (pages={pages}, max_pages={max_pages})")
        items: List[MovieItem] = []
        errors: List[BaseException] = []

        if pages is None:
            try:
                first = await self.governor.queue_request(build_page_url(base_url, 1))
            except GovernorError as e:
                logger.error(f"Stream command failed on the first page: {e}")
                self.ui.display_error(f"Could not load the first page: {e}")
                return False
            total_pages = self._total_pages(first, max_pages)
            already_loaded = 1
            items.extend(normalize_page(first, normalize_movie))
            self.ui.display_progress(stream_id, 1, total_pages, TMDB_PAGE_SIZE)
        else:
            total_pages = pages
            already_loaded = 0

        def on_error(error: BaseException) -> None:
            errors.append(error)
            self.ui.display_error(f"Stream '{stream_id}': {error}")

        callbacks = StreamCallbacks(
            on_progress=lambda loaded, total, approx: self.ui.display_progress(stream_id, loaded, total, approx),
            on_batch=items.extend,
            on_rate_limited=lambda wait: self.ui.display_warning(f"Rate limited by TMDb, waiting {wait:.1f}s"),
            on_complete=lambda: self.ui.display_info(f"Stream '{stream_id}' complete: {total_pages} pages"),
            on_error=on_error,
            on_cancelled=lambda: self.ui.display_warning(f"Stream '{stream_id}' cancelled"),
        )

        self.governor.start_streaming_load(base_url, total_pages, stream_id, callbacks,
                                           pages_already_loaded=already_loaded)
        try:
            await self.governor.wait_for_stream(stream_id)
        except asyncio.CancelledError:
            self.governor.cancel_stream(stream_id)
            raise

        self.ui.display_info(f"Loaded {len(items)} movies from {base_url}")
        if items:
            self.ui.display_items(items)
        self.ui.display_stats(self.governor.get_stats())
        return not errors

    @staticmethod
    def _total_pages(first_page: Any, max_pages: int) -> int:
        total = first_page.get("total_pages") if isinstance(first_page, dict) else None
        if isinstance(total, bool) or not isinstance(total, int) or total < 1:
            logger.warning(f"First page carries no usable total_pages ({total!r}), assuming 1")
            total = 1
        if total > max_pages:
            logger.info(f"Capping {total} pages at {max_pages}")
            total = max_pages
        return total

    async def handle_settings(self, settings: Dict[str, Any]) -> bool:
        """Handles the 'settings' command."""
        logger.info("Handling 'settings' command")
        self.ui.display_settings(settings)
        self.ui.display_status(self.governor.get_status())
        return True

    async def aclose(self) -> None:
        await self.governor.aclose()
