import asyncio
import time

from tmdbgov.domain.errors import GovernorError, HttpStatusError, QueueClearedError, RequestCancelledError
from tmdbgov.domain.models.requests import TransportResponse
from tmdbgov.domain.models.streaming import StreamCallbacks, build_page_url

BASE = "https://api.themoviedb.org/3/discover/movie?sort_by=popularity.desc"


class Recorder:
    """Collects every callback of one session."""

    def __init__(self):
        self.progress = []
        self.batches = []
        self.rate_limited = []
        self.errors = []
        self.completed = 0
        self.cancelled = 0

    def callbacks(self, **overrides):
        hooks = dict(
            on_progress=lambda loaded, total, approx: self.progress.append((loaded, total, approx)),
            on_batch=self.batches.append,
            on_rate_limited=self.rate_limited.append,
            on_complete=self._complete,
            on_error=self.errors.append,
            on_cancelled=self._cancel,
        )
        hooks.update(overrides)
        return StreamCallbacks(**hooks)

    def _complete(self):
        self.completed += 1

    def _cancel(self):
        self.cancelled += 1


def test_three_page_stream_reports_progress_then_completes(fake_transport, make_governor):
    recorder = Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 3, "popular", recorder.callbacks())
        await governor.wait_for_stream("popular")
        return governor.get_status()

    status = asyncio.run(scenario())

    assert recorder.progress == [(1, 3, 20), (2, 3, 40), (3, 3, 60)]
    assert recorder.completed == 1
    assert recorder.errors == []
    assert len(recorder.batches) == 3
    assert recorder.batches[0][0]["title"] == "Movie"
    assert recorder.batches[0][0]["year"] == 2020
    assert fake_transport.calls == [build_page_url(BASE, page) for page in (1, 2, 3)]
    assert status["active_streams"] == []


def test_stream_skips_pages_already_loaded(fake_transport, make_governor):
    recorder = Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 3, "rest", recorder.callbacks(), pages_already_loaded=1)
        await governor.wait_for_stream("rest")

    asyncio.run(scenario())

    assert fake_transport.calls == [build_page_url(BASE, 2), build_page_url(BASE, 3)]
    assert recorder.progress == [(2, 3, 40), (3, 3, 60)]
    assert recorder.completed == 1


def test_stream_with_everything_loaded_completes_immediately(fake_transport, make_governor):
    recorder = Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 1, "single-page", recorder.callbacks(), pages_already_loaded=1)
        await governor.wait_for_stream("single-page")

    asyncio.run(scenario())

    assert fake_transport.calls == []
    assert recorder.completed == 1


def test_cancel_after_second_page_stops_the_stream(fake_transport, make_governor):
    recorder = Recorder()
    holder = {}

    def on_progress(loaded, total, approx):
        recorder.progress.append((loaded, total, approx))
        if loaded == 2:
            holder["governor"].cancel_stream("cancel-me")

    async def scenario():
        governor = make_governor(fake_transport, min_interval_ms=20)
        holder["governor"] = governor
        governor.start_streaming_load(BASE, 5, "cancel-me", recorder.callbacks(on_progress=on_progress))
        await governor.wait_for_stream("cancel-me")
        await asyncio.sleep(0.1)
        return governor.get_status()

    status = asyncio.run(scenario())

    assert recorder.progress == [(1, 5, 20), (2, 5, 40)]
    assert recorder.completed == 0
    assert recorder.cancelled == 1
    assert recorder.errors == []
    assert build_page_url(BASE, 3) not in fake_transport.calls
    assert build_page_url(BASE, 4) not in fake_transport.calls
    assert build_page_url(BASE, 5) not in fake_transport.calls
    assert status["queue_length"] == 0


async def wait_until_called(transport, url):
    while url not in transport.calls:
        await asyncio.sleep(0.005)


def test_cancel_aborts_page_in_flight(fake_transport, make_governor):
    recorder = Recorder()
    fake_transport.delays[build_page_url(BASE, 2)] = 2.0

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 4, "slow", recorder.callbacks())
        await wait_until_called(fake_transport, build_page_url(BASE, 2))
        started = time.monotonic()
        assert governor.cancel_stream("slow") is True
        await governor.wait_for_stream("slow")
        return time.monotonic() - started, governor.get_status()

    elapsed, status = asyncio.run(scenario())

    assert elapsed < 0.5
    assert recorder.progress == [(1, 4, 20)]
    assert recorder.cancelled == 1
    assert recorder.errors == []
    assert fake_transport.tokens[1].cancelled
    assert build_page_url(BASE, 3) not in fake_transport.calls
    assert status["active_streams"] == []


def test_cancelled_stream_id_can_be_reused_while_its_page_is_in_flight(fake_transport, make_governor):
    first, second = Recorder(), Recorder()
    fake_transport.delays[build_page_url(BASE, 1)] = 2.0

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 3, "reuse", first.callbacks())
        await wait_until_called(fake_transport, build_page_url(BASE, 1))
        governor.cancel_stream("reuse")
        fake_transport.delays.clear()
        governor.start_streaming_load(BASE, 3, "reuse", second.callbacks())
        await governor.wait_for_stream("reuse")
        return governor.get_status()

    status = asyncio.run(scenario())

    assert first.cancelled == 1
    assert first.progress == []
    assert first.errors == []
    assert second.errors == []
    assert second.progress == [(1, 3, 20), (2, 3, 40), (3, 3, 60)]
    assert second.completed == 1
    assert status["active_streams"] == []


def test_cancel_unknown_stream_returns_false(fake_transport, make_governor):
    async def scenario():
        governor = make_governor(fake_transport)
        return governor.cancel_stream("nope")

    assert asyncio.run(scenario()) is False


def test_failed_page_goes_to_on_error_and_stream_continues(fake_transport, make_governor):
    recorder = Recorder()
    fake_transport.script(build_page_url(BASE, 2), TransportResponse(status_code=500, content=b""))

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 3, "flaky", recorder.callbacks())
        await governor.wait_for_stream("flaky")
        return governor.get_status()

    status = asyncio.run(scenario())

    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], HttpStatusError)
    assert recorder.progress == [(1, 3, 20), (2, 3, 40)]
    assert recorder.completed == 0
    assert build_page_url(BASE, 3) in fake_transport.calls
    assert status["active_streams"] == []


def test_rate_limited_page_notifies_stream(fake_transport, make_governor, rate_limited):
    recorder = Recorder()
    fake_transport.script(build_page_url(BASE, 1), rate_limited("0.01"))

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 2, "throttled", recorder.callbacks())
        await governor.wait_for_stream("throttled")

    asyncio.run(scenario())

    assert recorder.rate_limited == [0.01]
    assert recorder.completed == 1


def test_invalid_page_counts_are_reported_through_on_error(fake_transport, make_governor):
    recorder = Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 0, "empty", recorder.callbacks())
        governor.start_streaming_load(BASE, 2, "too-many", recorder.callbacks(), pages_already_loaded=3)
        return governor.get_status()

    status = asyncio.run(scenario())

    assert len(recorder.errors) == 2
    assert all(isinstance(e, GovernorError) for e in recorder.errors)
    assert status["active_streams"] == []
    assert fake_transport.calls == []


def test_duplicate_stream_id_is_rejected(fake_transport, make_governor):
    first, second = Recorder(), Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 2, "dup", first.callbacks())
        governor.start_streaming_load(BASE, 2, "dup", second.callbacks())
        await governor.wait_for_stream("dup")

    asyncio.run(scenario())

    assert first.completed == 1
    assert len(second.errors) == 1
    assert "already active" in str(second.errors[0])
    assert len(fake_transport.calls) == 2


def test_status_lists_active_streams(fake_transport, make_governor):
    fake_transport.delay = 0.05

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 3, "watched", Recorder().callbacks())
        await asyncio.sleep(0.08)
        status = governor.get_status()
        governor.cancel_stream("watched")
        return status

    status = asyncio.run(scenario())

    assert status["active_streams"] == [{"id": "watched", "progress": "1/3", "cancelled": False}]


def test_clear_all_cancels_sessions(fake_transport, make_governor):
    fake_transport.delay = 0.05
    recorder = Recorder()

    async def scenario():
        governor = make_governor(fake_transport)
        single = governor.queue_request("https://api.themoviedb.org/3/movie/550")
        governor.start_streaming_load(BASE, 3, "bulk", recorder.callbacks())
        await asyncio.sleep(0.01)
        governor.clear_all()
        await governor.wait_for_stream("bulk")
        results = await asyncio.gather(single, return_exceptions=True)
        return results, governor.get_status()

    results, status = asyncio.run(scenario())

    assert isinstance(results[0], QueueClearedError)
    assert isinstance(results[0], RequestCancelledError)
    assert recorder.cancelled == 1
    assert recorder.completed == 0
    assert recorder.errors == []
    assert status["active_streams"] == []
    assert status["queue_length"] == 0


def test_callback_errors_do_not_break_the_stream(fake_transport, make_governor):
    recorder = Recorder()

    def explode(items):
        raise RuntimeError("consumer bug")

    async def scenario():
        governor = make_governor(fake_transport)
        governor.start_streaming_load(BASE, 2, "buggy", recorder.callbacks(on_batch=explode))
        await governor.wait_for_stream("buggy")

    asyncio.run(scenario())

    assert recorder.progress == [(1, 2, 20), (2, 2, 40)]
    assert recorder.completed == 1
