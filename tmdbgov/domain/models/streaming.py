"""Domain models for multi-page bulk fetch jobs (streaming sessions)."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .common import MovieItem, StreamId, TMDB_PAGE_SIZE, Url


@dataclass
class StreamCallbacks:
    """Consumer hooks of a streaming session. Every hook is optional."""
    on_progress: Optional[Callable[[int, int, int], None]] = None  # (loaded, total, approx_count)
    on_batch: Optional[Callable[[List[MovieItem]], None]] = None
    on_rate_limited: Optional[Callable[[float], None]] = None      # wait in seconds
    on_complete: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_cancelled: Optional[Callable[[], None]] = None


@dataclass(eq=False)
class StreamSession:
    """Entity tracking one bulk job.

    ``loaded_pages`` only grows and never exceeds ``total_pages``;
    ``cancelled`` only flips from False to True.
    """
    stream_id: StreamId
    base_url: Url
    total_pages: int
    loaded_pages: int
    callbacks: StreamCallbacks
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    pending_pages: int = 0
    closed: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def progress(self) -> str:
        return f"{self.loaded_pages}/{self.total_pages}"

    @property
    def approx_count(self) -> int:
        return self.loaded_pages * TMDB_PAGE_SIZE

    @property
    def is_complete(self) -> bool:
        return self.loaded_pages >= self.total_pages


def build_page_url(base_url: str, page: int) -> Url:
    """Appends the ``page`` query parameter to a TMDb list URL."""
    separator = "&" if "?" in base_url else "?"
    return Url(f"{base_url}{separator}page={page}")


def _release_year(release_date: Optional[str]) -> Optional[int]:
    if not release_date or len(release_date) < 4:
        return None
    try:
        return int(release_date[:4])
    except ValueError:
        return None


def normalize_movie(raw: Dict[str, Any]) -> MovieItem:
    """Maps a raw TMDb discover/list result onto the movie item shape."""
    return {
        "id": raw.get("id"),
        "title": raw.get("title"),
        "release_date": raw.get("release_date"),
        "year": _release_year(raw.get("release_date")),
        "poster_path": raw.get("poster_path"),
        "backdrop_path": raw.get("backdrop_path"),
        "overview": raw.get("overview"),
        "vote_average": raw.get("vote_average"),
        "vote_count": raw.get("vote_count"),
        "popularity": raw.get("popularity"),
        "adult": raw.get("adult"),
        "genre_ids": raw.get("genre_ids"),
        "original_language": raw.get("original_language"),
        "original_title": raw.get("original_title"),
        "video": raw.get("video"),
    }


def normalize_page(body: Any, normalizer: Callable[[Dict[str, Any]], MovieItem] = normalize_movie) -> List[MovieItem]:
    """Extracts and normalizes the ``results`` array of a page body."""
    if not isinstance(body, dict):
        return []
    results = body.get("results") or []
    return [normalizer(item) for item in results if isinstance(item, dict)]
