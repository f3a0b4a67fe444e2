"""Running a benchmark: workers, limits, and the final report."""

from __future__ import annotations

import json
import logging
import math
import os
import signal
import sys
import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Optional, TextIO

from yab.caller import BenchmarkCaller, warm_transports
from yab.encoding.serializers import MethodType
from yab.state import (
    QUANTILES,
    BenchmarkState,
    NoopStatsClient,
    StatsClient,
    format_duration,
    print_latencies,
)

_logger = logging.getLogger(__name__)


class BenchmarkError(RuntimeError):
    """The benchmark could not be run."""


@dataclass
class BenchmarkOptions:
    """Benchmark settings; durations are in seconds."""

    max_requests: int = 0
    max_duration: float = 0.0
    rps: int = 0
    connections: int = 0
    concurrency: int = 1
    warmup_requests: int = 0
    num_cpus: int = 0
    format: str = ""
    per_peer_stats: bool = False

    def validate(self) -> None:
        """Raise BenchmarkError if a limit is negative."""
        if self.max_duration < 0:
            raise BenchmarkError("duration cannot be negative")
        if self.max_requests < 0:
            raise BenchmarkError("max requests cannot be negative")

    def enabled(self) -> bool:
        """A benchmark runs only when a duration or request limit is given."""
        return self.max_duration != 0 or self.max_requests != 0

    def num_connections(self, cpus: int) -> int:
        """The configured connections, or twice the CPU count by default."""
        if self.connections > 0:
            return self.connections
        return cpus * 2

    def effective_max_requests(self) -> int:
        """Max requests, capped by RPS times the duration when both are set."""
        max_requests = self.max_requests
        if self.rps > 0 and self.max_duration > 0:
            rps_max = int(float(self.rps) * self.max_duration)
            if rps_max < max_requests or max_requests == 0:
                max_requests = rps_max
        return max_requests

    def _cpus(self) -> int:
        if self.num_cpus > 0:
            return self.num_cpus
        return os.cpu_count() or 1


@dataclass(frozen=True)
class Parameters:
    """The settings a benchmark ran with."""

    cpus: int
    connections: int
    concurrency: int
    max_requests: int
    max_duration: str
    max_rps: int

    def to_json(self) -> dict[str, Any]:
        return {
            "cpus": self.cpus,
            "connections": self.connections,
            "concurrency": self.concurrency,
            "maxRequests": self.max_requests,
            "maxDuration": self.max_duration,
            "maxRPS": self.max_rps,
        }


@dataclass(frozen=True)
class Summary:
    """Overall benchmark results."""

    elapsed_time_seconds: float
    total_requests: int
    rps: float

    def to_json(self) -> dict[str, Any]:
        return {
            "elapsedTimeSeconds": self.elapsed_time_seconds,
            "totalRequests": self.total_requests,
            "rps": self.rps,
        }


@dataclass(frozen=True)
class StreamSummary:
    """Stream messages exchanged during a streaming benchmark."""

    total_stream_messages_sent: int
    total_stream_messages_received: int

    def to_json(self) -> dict[str, Any]:
        return {
            "totalStreamMessagesSent": self.total_stream_messages_sent,
            "totalStreamMessagesReceived": self.total_stream_messages_received,
        }


class _Run:
    """Hands out permission to make requests until a limit is reached or it is stopped."""

    def __init__(self, max_requests: int, rps: int, max_duration: float) -> None:
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._remaining: Optional[int] = max_requests if max_requests > 0 else None
        now = time.monotonic()
        self._deadline: Optional[float] = now + max_duration if max_duration > 0 else None
        self._interval = 1.0 / rps if rps > 0 else 0.0
        self._next_slot = now

    def more(self) -> bool:
        with self._lock:
            if self._stopped.is_set():
                return False
            if self._remaining is not None:
                if self._remaining <= 0:
                    return False
                self._remaining -= 1
            slot: Optional[float] = None
            if self._interval:
                slot = max(self._next_slot, time.monotonic())
                self._next_slot = slot + self._interval

        if slot is not None:
            if self._deadline is not None and slot >= self._deadline:
                return False
            delay = slot - time.monotonic()
            if delay > 0 and self._stopped.wait(delay):
                return False
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return False
        return not self._stopped.is_set()

    def stop(self) -> None:
        self._stopped.set()


class _PrefixedClient:
    def __init__(self, client: StatsClient, prefix: str) -> None:
        self._client = client
        self._prefix = prefix

    def inc(self, name: str) -> None:
        self._client.inc(self._prefix + name)

    def timing(self, name: str, duration: int) -> None:
        self._client.timing(self._prefix + name, duration)


class _MultiClient:
    def __init__(self, *clients: StatsClient) -> None:
        self._clients = clients

    def inc(self, name: str) -> None:
        for client in self._clients:
            client.inc(name)

    def timing(self, name: str, duration: int) -> None:
        for client in self._clients:
            client.timing(name, duration)


@contextmanager
def _stop_on_interrupt(out: TextIO, run: Any) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum: int, frame: Any) -> None:
        # Preceding newline since Ctrl-C will be printed inline.
        out.write("\n!!Benchmark interrupted!!\n")
        run.stop()

    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)


def run_worker(
    transport: Any,
    caller: BenchmarkCaller,
    state: BenchmarkState,
    run: Any,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Make calls until the run says to stop, recording each outcome."""
    logger = logger or _logger
    while run.more():
        try:
            report = caller.call(transport)
        except Exception as err:
            state.record_error(err)
            logger.info("Failed while making call: %s", err)
            continue

        state.record_latency(report.latency)
        sent = getattr(report, "stream_messages_sent", None)
        received = getattr(report, "stream_messages_received", None)
        if sent is not None and received is not None:
            state.record_stream_messages(sent, received)


def _round_hundredths(value: float) -> float:
    return math.copysign(math.floor(abs(value) * 100 + 0.5), value) / 100


def run_benchmark(
    out: TextIO,
    options: BenchmarkOptions,
    caller: BenchmarkCaller,
    transport_factory: Callable[[str], Any],
    peers: Sequence[str],
    statter: Optional[StatsClient] = None,
    run: Any = None,
) -> Optional[BenchmarkState]:
    """Run the benchmark, write its report to ``out`` and return the merged results.

    Returns None without doing anything if benchmarking is not enabled.
    """
    try:
        options.validate()
    except BenchmarkError as exc:
        raise BenchmarkError(f"Invalid benchmarking options: {exc}") from exc
    if not options.enabled():
        return None

    max_requests = options.effective_max_requests()
    cpus = options._cpus()
    num_conns = options.num_connections(cpus)

    parameters = Parameters(
        cpus=cpus,
        connections=num_conns,
        concurrency=options.concurrency,
        max_requests=max_requests,
        max_duration=format_duration(round(options.max_duration * 1e9)),
        max_rps=options.rps,
    )

    # JSON parameters are printed afterwards to keep a single JSON document.
    format_as_json = False
    fmt = options.format.lower()
    if fmt in ("text", ""):
        print_parameters(out, parameters)
    elif fmt == "json":
        format_as_json = True
    else:
        sys.stderr.write(
            f"Unrecognized format option {json.dumps(options.format)}, please specify "
            "'json' for JSON output. Printing plaintext output as default.\n\n"
        )
        print_parameters(out, parameters)

    _logger.debug("Warming up connections: %d", num_conns)
    try:
        connections = warm_transports(
            caller, num_conns, peers, transport_factory, options.warmup_requests
        )
    except Exception as exc:
        raise BenchmarkError(
            f"Failed to warmup connections for benchmark: {exc}"
        ) from exc

    global_statter: StatsClient = statter if statter is not None else NoopStatsClient()
    workers: list[tuple[Any, BenchmarkState]] = []
    for conn in connections:
        conn_statter = global_statter
        if options.per_peer_stats:
            conn_statter = _MultiClient(
                global_statter,
                _PrefixedClient(global_statter, f"peer.{conn.peer_id}."),
            )
        for _ in range(options.concurrency):
            workers.append((conn.transport, BenchmarkState(conn_statter)))

    if not workers:
        raise BenchmarkError("benchmark needs at least one connection and concurrency")

    if run is None:
        run = _Run(max_requests, options.rps, options.max_duration)

    _logger.info("Benchmark starting with options %r", options)
    start = time.perf_counter_ns()
    with _stop_on_interrupt(out, run):
        threads = [
            threading.Thread(
                target=run_worker, args=(transport, caller, state, run, _logger), daemon=True
            )
            for transport, state in workers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    total = time.perf_counter_ns() - start

    overall = workers[0][1]
    for _, state in workers[1:]:
        overall.merge(state)

    _logger.info(
        "Benchmark complete: duration %s, %d requests",
        format_duration(total),
        overall.total_requests,
    )

    overall.print_errors(out)
    latency_values = overall.get_latencies()

    total_seconds = total / 1e9
    rps = overall.total_requests / total_seconds if total_seconds > 0 else 0.0
    summary = Summary(
        elapsed_time_seconds=(total // 1_000_000) / 1000,
        total_requests=overall.total_requests,
        rps=_round_hundredths(rps),
    )

    stream_summary: Optional[StreamSummary] = None
    if caller.method_type() != MethodType.UNARY:
        stream_summary = StreamSummary(
            total_stream_messages_sent=overall.total_stream_messages_sent,
            total_stream_messages_received=overall.total_stream_messages_received,
        )

    if format_as_json:
        output_json(out, parameters, latency_values, summary, stream_summary)
    else:
        output_plaintext(out, latency_values, summary, stream_summary)
    return overall


def output_json(
    out: TextIO,
    parameters: Parameters,
    latency_values: Mapping[float, int],
    summary: Summary,
    stream_summary: Optional[StreamSummary],
) -> None:
    """Write parameters and results as one indented JSON document."""
    document: dict[str, Any] = {
        "benchmarkParameters": parameters.to_json(),
        "latencies": {
            f"{q:.4f}": format_duration(latency_values.get(q, 0)) for q in QUANTILES
        },
        "summary": summary.to_json(),
    }
    if stream_summary is not None:
        document["streamSummary"] = stream_summary.to_json()
    out.write(json.dumps(document, indent=2, ensure_ascii=False) + "\n")


def output_plaintext(
    out: TextIO,
    latency_values: Mapping[float, int],
    summary: Summary,
    stream_summary: Optional[StreamSummary],
) -> None:
    """Write latencies and the summary as text."""
    print_latencies(out, latency_values)
    out.write(f"Elapsed time (seconds):         {summary.elapsed_time_seconds:.2f}\n")
    out.write(f"Total requests:                 {summary.total_requests}\n")
    out.write(f"RPS:                            {summary.rps:.2f}\n")
    if stream_summary is not None:
        out.write(
            f"Total stream messages sent:     {stream_summary.total_stream_messages_sent}\n"
        )
        out.write(
            "Total stream messages received: "
            f"{stream_summary.total_stream_messages_received}\n"
        )


def print_parameters(out: TextIO, parameters: Parameters) -> None:
    """Write the benchmark parameters as text."""
    out.write("Benchmark parameters:\n")
    out.write(f"  CPUs:            {parameters.cpus}\n")
    out.write(f"  Connections:     {parameters.connections}\n")
    out.write(f"  Concurrency:     {parameters.concurrency}\n")
    out.write(f"  Max requests:    {parameters.max_requests}\n")
    out.write(f"  Max duration:    {parameters.max_duration}\n")
    out.write(f"  Max RPS:         {parameters.max_rps}\n")


__all__ = [
    "BenchmarkError",
    "BenchmarkOptions",
    "Parameters",
    "Summary",
    "StreamSummary",
    "run_worker",
    "run_benchmark",
    "output_json",
    "output_plaintext",
    "print_parameters",
    "asdict",
]