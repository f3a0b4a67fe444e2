import io

import pytest

from yab.state import (
    QUANTILES,
    BenchmarkState,
    NoopStatsClient,
    error_to_message,
    format_duration,
    print_latencies,
)

MICROSECOND = 1000


class FakeStatsClient:
    def __init__(self):
        self.counters = {}
        self.timers = {}

    def inc(self, name):
        self.counters[name] = self.counters.get(name, 0) + 1

    def timing(self, name, duration):
        self.timers.setdefault(name, []).append(duration)


EXPECTED_LATENCY_LINES = [
    "0.5000: 5ms",
    "0.9000: 9ms",
    "0.9500: 9.5ms",
    "0.9900: 9.9ms",
    "0.9990: 9.99ms",
    "0.9995: 9.995ms",
    "1.0000: 10ms",
]


def test_benchmark_state_errors():
    stats1 = FakeStatsClient()
    state1 = BenchmarkState(stats1)
    state2 = BenchmarkState(NoopStatsClient())

    for i, ms in enumerate([91, 9, 80, 800, 810, 100, 1020]):
        err = RuntimeError(f"failed after {ms}ms")
        if i % 2 == 0:
            state1.record_error(err)
        else:
            state2.record_error(err)

    with pytest.raises(ValueError):
        state1.record_error(None)

    assert state1.total_errors == 4
    assert state1.total_success == 0
    assert state1.total_requests == 4

    state1.merge(state2)

    assert state1.total_errors == 7
    assert state1.total_success == 0
    assert state1.total_requests == 7

    out = io.StringIO()
    state1.print_errors(out)
    text = out.getvalue()
    assert "   7: failed after Xms" in text
    assert "Total errors: 7" in text
    assert "Error rate: 100.0000%" in text

    assert stats1.counters == {"error": 4}


def test_error_rate_partial():
    state = BenchmarkState()
    state.record_error(RuntimeError("boom"))
    state.record_latency(5)
    state.record_latency(6)
    state.record_latency(7)
    out = io.StringIO()
    state.print_errors(out)
    assert "Error rate: 25.0000%" in out.getvalue()


def test_benchmark_state_no_error():
    state = BenchmarkState(NoopStatsClient())
    out = io.StringIO()
    state.print_errors(out)
    assert out.getvalue() == ""


def test_benchmark_state_latencies():
    stats = FakeStatsClient()
    state = BenchmarkState(stats)

    latencies = []
    for i in range(10001):
        latency = i * MICROSECOND
        state.record_latency(latency)
        latencies.append(latency)

    assert state.total_errors == 0
    assert state.total_success == 10001
    assert state.total_requests == 10001

    out = io.StringIO()
    print_latencies(out, state.get_latencies())
    text = out.getvalue()
    for line in EXPECTED_LATENCY_LINES:
        assert line in text

    assert stats.counters == {"success": len(latencies)}
    assert stats.timers == {"latency": latencies}


def test_benchmark_state_merge_latencies():
    state1 = BenchmarkState(NoopStatsClient())
    state2 = BenchmarkState(NoopStatsClient())
    for i in range(10001):
        if i % 2 == 0:
            state1.record_latency(i * MICROSECOND)
        else:
            state2.record_latency(i * MICROSECOND)

    assert state1.total_errors == 0
    assert state1.total_success == 5001
    assert state1.total_requests == 5001

    state1.merge(state2)

    assert state1.total_errors == 0
    assert state1.total_success == 10001
    assert state1.total_requests == 10001

    out = io.StringIO()
    print_latencies(out, state1.get_latencies())
    text = out.getvalue()
    for line in EXPECTED_LATENCY_LINES:
        assert line in text


def test_merge_stream_messages():
    state1 = BenchmarkState()
    state2 = BenchmarkState()
    state1.record_stream_messages(2, 3)
    state2.record_stream_messages(4, 5)
    state1.merge(state2)
    assert state1.total_stream_messages_sent == 6
    assert state1.total_stream_messages_received == 8


@pytest.mark.parametrize(
    "message, want",
    [
        ("no digits", "no digits"),
        ("has 1 digit", "has X digit"),
        ("has two 22 digits", "has two X digits"),
        ("has lots 12345 digits", "has lots X digits"),
        ("has an ip 10.2.40.5", "has an ip X.X.X.X"),
    ],
)
def test_error_to_message(message, want):
    assert error_to_message(RuntimeError(message)) == want


@pytest.mark.parametrize("q", [-0.1, 1.0000001, 10])
def test_get_quantile_rejects_out_of_range(q):
    state = BenchmarkState(NoopStatsClient())
    with pytest.raises(ValueError, match="unexpected quantile"):
        state.get_quantile(q)


SEQ10 = list(range(0, 101, 10))


@pytest.mark.parametrize(
    "latencies, q, want",
    [
        ([], 0.0, 0),
        ([], 0.5, 0),
        ([], 1.0, 0),
        ([1], 0.0, 1),
        ([1], 0.5, 1),
        ([1], 1.0, 1),
        (SEQ10, 0.0, 0),
        (SEQ10, 0.5, 50),
        (SEQ10, 1.0, 100),
        (SEQ10, 0.2, 20),
        (SEQ10, 0.3, 30),
        (SEQ10, 0.22, 22),
        (SEQ10, 0.25, 25),
        (SEQ10, 0.29, 29),
    ],
)
def test_get_quantile(latencies, q, want):
    state = BenchmarkState(NoopStatsClient())
    for d in latencies:
        state.record_latency(d)
    assert state.get_quantile(q) == want


def test_get_latencies_covers_all_quantiles():
    state = BenchmarkState()
    for d in (30, 10, 20):
        state.record_latency(d)
    values = state.get_latencies()
    assert list(values) == list(QUANTILES)
    assert state.latencies == [10, 20, 30]
    assert values[1.0] == 30
    assert values[0.5] == 20


@pytest.mark.parametrize(
    "ns, want",
    [
        (0, "0s"),
        (999, "999ns"),
        (1500, "1.5µs"),
        (5_000_000, "5ms"),
        (9_500_000, "9.5ms"),
        (9_995_000, "9.995ms"),
        (1_000_000_000, "1s"),
        (90_500_000_000, "1m30.5s"),
        (3_600_000_000_000, "1h0m0s"),
        (-1500, "-1.5µs"),
    ],
)
def test_format_duration(ns, want):
    assert format_duration(ns) == want