"""Per-worker benchmark bookkeeping: counts, errors and latency quantiles."""

from __future__ import annotations

import re
import struct
from collections import Counter
from collections.abc import Mapping
from typing import Optional, Protocol, TextIO

# Quantiles reported for every benchmark, in output order.
QUANTILES: tuple[float, ...] = (0.5, 0.9, 0.95, 0.99, 0.999, 0.9995, 1.0)

_DIGITS = re.compile(r"[0-9]+")

_NANOSECOND = 1
_MICROSECOND = 1000 * _NANOSECOND
_MILLISECOND = 1000 * _MICROSECOND
_SECOND = 1000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE


class StatsClient(Protocol):
    def inc(self, name: str) -> None: ...

    def timing(self, name: str, duration: int) -> None: ...


class NoopStatsClient:
    """A stats client that emits nothing, only counting what it discarded."""

    def __init__(self) -> None:
        self.discarded = 0

    def inc(self, name: str) -> None:
        self.discarded += 1

    def timing(self, name: str, duration: int) -> None:
        self.discarded += 1


def _f32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def error_to_message(err: BaseException) -> str:
    """Collapse every run of digits in the error text to a single ``X``."""
    return _DIGITS.sub("X", str(err))


def _with_fraction(value: int, precision: int) -> str:
    whole, frac = divmod(value, 10**precision)
    if not frac:
        return str(whole)
    digits = str(frac).zfill(precision).rstrip("0")
    return f"{whole}.{digits}"


def format_duration(nanoseconds: int) -> str:
    """Format a duration in nanoseconds like ``5ms``, ``1.5µs`` or ``1h2m3.5s``."""
    ns = int(nanoseconds)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)

    if u < _SECOND:
        if u < _MICROSECOND:
            return f"{sign}{u}ns"
        if u < _MILLISECOND:
            return f"{sign}{_with_fraction(u, 3)}µs"
        return f"{sign}{_with_fraction(u, 6)}ms"

    hours, rest = divmod(u, _HOUR)
    minutes, rest = divmod(rest, _MINUTE)
    text = f"{_with_fraction(rest, 9)}s"
    if u >= _MINUTE:
        text = f"{minutes}m{text}"
    if u >= _HOUR:
        text = f"{hours}h{text}"
    return sign + text


class BenchmarkState:
    """Results gathered by one benchmark worker."""

    def __init__(self, statter: Optional[StatsClient] = None) -> None:
        self.statter: StatsClient = statter if statter is not None else NoopStatsClient()
        self.errors: Counter[str] = Counter()
        self.total_errors = 0
        self.total_success = 0
        self.total_requests = 0
        self.latencies: list[int] = []
        self.total_stream_messages_sent = 0
        self.total_stream_messages_received = 0

    def record_request(self) -> None:
        self.total_requests += 1

    def record_error(self, err: Optional[BaseException]) -> None:
        """Count a failed request under its digit-free message."""
        if err is None:
            raise ValueError("record_error not passed error")
        self.record_request()
        self.errors[error_to_message(err)] += 1
        self.total_errors += 1
        self.statter.inc("error")

    def record_latency(self, duration: int) -> None:
        """Count a successful request that took ``duration`` nanoseconds."""
        self.record_request()
        self.latencies.append(int(duration))
        self.total_success += 1
        self.statter.inc("success")
        self.statter.timing("latency", int(duration))

    def record_stream_messages(self, sent: int, received: int) -> None:
        self.total_stream_messages_sent += sent
        self.total_stream_messages_received += received

    def merge(self, other: BenchmarkState) -> None:
        """Fold another worker's results into this one."""
        self.errors.update(other.errors)
        self.latencies.extend(other.latencies)
        self.total_errors += other.total_errors
        self.total_success += other.total_success
        self.total_requests += other.total_requests
        self.total_stream_messages_received += other.total_stream_messages_received
        self.total_stream_messages_sent += other.total_stream_messages_sent

    def get_quantile(self, q: float) -> int:
        """Linearly interpolated quantile of the recorded latencies, in nanoseconds."""
        if q < 0 or q > 1:
            raise ValueError(f"got unexpected quantile: {q}, must be in range [0, 1]")

        count = len(self.latencies)
        if count == 0:
            return 0
        if count == 1:
            return self.latencies[0]

        last_index = count - 1
        exact_idx = q * float(last_index)
        left_idx = int(exact_idx)
        if left_idx >= last_index:
            return self.latencies[last_index]

        right_idx = left_idx + 1
        right_bias = exact_idx - float(left_idx)
        left_bias = 1 - right_bias
        return int(
            float(self.latencies[left_idx]) * left_bias
            + float(self.latencies[right_idx]) * right_bias
        )

    def get_latencies(self) -> dict[float, int]:
        """Sort the latencies and map each reported quantile to its value."""
        self.latencies.sort()
        return {q: self.get_quantile(q) for q in QUANTILES}

    def print_errors(self, out: TextIO) -> None:
        """Write a summary of errors; nothing if there were none."""
        if not self.errors:
            return
        out.write("Errors:\n")
        for message in sorted(self.errors):
            out.write(f"  {self.errors[message]:4d}: {message}\n")
        out.write(f"Total errors: {self.total_errors}\n")
        rate = _f32(
            _f32(100 * _f32(self.total_errors)) / _f32(self.total_requests)
        )
        out.write(f"Error rate: {rate:.4f}%\n")


def print_latencies(out: TextIO, latency_values: Mapping[float, int]) -> None:
    """Write the latency of every reported quantile."""
    out.write("Latencies:\n")
    for q in QUANTILES:
        out.write(f"  {q:.4f}: {format_duration(latency_values.get(q, 0))}\n")