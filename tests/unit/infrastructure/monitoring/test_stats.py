import pytest

from tmdbgov.domain.errors import InvalidConfigurationError
from tmdbgov.infrastructure.monitoring.stats import StatsCollector


def test_empty_snapshot_is_all_zero():
    snapshot = StatsCollector().snapshot()
    assert snapshot == {
        "total_requests": 0,
        "timeout_count": 0,
        "response_times": [],
        "average_response_time_ms": 0.0,
        "min_response_time_ms": 0.0,
        "max_response_time_ms": 0.0,
    }


def test_successes_and_timeouts_are_counted():
    stats = StatsCollector()
    stats.record_success(100)
    stats.record_success(300)
    stats.record_timeout()

    snapshot = stats.snapshot()

    assert snapshot["total_requests"] == 3
    assert snapshot["timeout_count"] == 1
    assert snapshot["response_times"] == [100.0, 300.0]
    assert snapshot["average_response_time_ms"] == 200.0
    assert snapshot["min_response_time_ms"] == 100.0
    assert snapshot["max_response_time_ms"] == 300.0


def test_oldest_samples_are_evicted_at_capacity():
    stats = StatsCollector(capacity=3)
    for ms in (10, 20, 30, 40, 50):
        stats.record_success(ms)

    snapshot = stats.snapshot()

    assert snapshot["response_times"] == [30.0, 40.0, 50.0]
    assert snapshot["total_requests"] == 5


def test_default_capacity_is_one_hundred():
    stats = StatsCollector()
    for ms in range(150):
        stats.record_success(ms)
    assert len(stats.snapshot()["response_times"]) == 100


@pytest.mark.parametrize("capacity", [0, -1, 2.5, True])
def test_invalid_capacity_is_rejected(capacity):
    with pytest.raises(InvalidConfigurationError):
        StatsCollector(capacity=capacity)
