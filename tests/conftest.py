import asyncio
import os
import time
from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from tmdbgov.core.governor import RequestGovernor
from tmdbgov.domain.interfaces.http_transport import HttpTransport
from tmdbgov.domain.models.cancellation import CancellationToken
from tmdbgov.domain.models.requests import TransportResponse
from tmdbgov.infrastructure.cli.display import ConsoleDisplay
from tmdbgov.infrastructure.config.settings import clear_test_config


def movie(movie_id: int, title: str = "Movie", release_date: str = "2020-05-01") -> Dict[str, Any]:
    return {"id": movie_id, "title": title, "release_date": release_date, "vote_average": 7.5}


def page_body(url: str, total_pages: int = 3) -> Dict[str, Any]:
    return {"url": url, "total_pages": total_pages, "results": [movie(1), movie(2)]}


class FakeTransport(HttpTransport):
    """Scripted transport: per-URL responses or exceptions, optional latency.

    URLs with no script left answer 200 with ``page_body(url)``.
    """

    def __init__(self, delay: float = 0.0, total_pages: int = 3):
        self.delay = delay
        self.total_pages = total_pages
        self.delays: Dict[str, float] = {}
        self.scripts: Dict[str, List[Any]] = {}
        self.calls: List[str] = []
        self.tokens: List[CancellationToken] = []
        self.call_times: List[float] = []
        self.closed = False

    def script(self, url: str, *steps: Any) -> None:
        self.scripts.setdefault(url, []).extend(steps)

    async def get(self, url, token):
        self.calls.append(url)
        self.tokens.append(token)
        self.call_times.append(time.monotonic())
        delay = self.delays.get(url, self.delay)
        if delay:
            await asyncio.sleep(delay)
        steps = self.scripts.get(url)
        step = steps.pop(0) if steps else TransportResponse.from_json(page_body(url, self.total_pages))
        if isinstance(step, Exception):
            raise step
        return step

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def rate_limited():
    """Factory of 429 responses; pass None to omit the Retry-After header."""
    def build(retry_after="0") -> TransportResponse:
        headers = {"Retry-After": retry_after} if retry_after is not None else {}
        return TransportResponse(status_code=429, headers=headers, content=b"")
    return build


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_governor():
    """Builds a governor with fast test timings. Call it inside a running loop."""
    def factory(transport: HttpTransport, **overrides: Any) -> RequestGovernor:
        options = {"min_interval_ms": 1, "max_backoff_ms": 20}
        options.update(overrides)
        return RequestGovernor(transport, **options)
    return factory


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def mock_console_display(mocker):
    """Mocks the ConsoleDisplay to capture output easily."""
    mock = mocker.MagicMock(spec=ConsoleDisplay)
    mocker.patch('tmdbgov.main.ConsoleDisplay', return_value=mock)
    return mock


@pytest.fixture
def patched_transport(mocker):
    """Replaces the httpx transport built by the composition root."""
    transport = FakeTransport()
    mocker.patch('tmdbgov.main.HttpxTransport', return_value=transport)
    # Keep pytest's own log handlers in place
    mocker.patch('tmdbgov.main.setup_logging')
    return transport


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Drops TMDBGOV_* variables and test overrides around every test."""
    for key in list(os.environ):
        if key.startswith("TMDBGOV_"):
            monkeypatch.delenv(key)
    yield
    clear_test_config()
