"""Benchmark callers: unary and streaming calls, and transport warm-up."""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from yab.encoding.serializers import MethodType, Request, Response, StreamRequest
from yab.streaming import StreamRequestOptions, make_stream_request


class CallReport(Protocol):
    latency: int


class BenchmarkCaller(Protocol):
    def call(self, transport: Any) -> CallReport: ...

    def method_type(self) -> MethodType: ...


@dataclass(frozen=True)
class CallLatencyReport:
    """Time taken by one call, in nanoseconds."""

    latency: int


@dataclass(frozen=True)
class StreamCallReport:
    """Time taken by one streaming call and the messages it exchanged."""

    latency: int
    stream_messages_received: int
    stream_messages_sent: int


@dataclass(frozen=True)
class PeerTransport:
    """A warmed-up transport and the index of the peer it talks to."""

    transport: Any
    peer_id: int


class StreamIOBenchmark:
    """Feeds a fixed list of request messages and records every response."""

    def __init__(self, requests: Sequence[bytes]) -> None:
        self.stream_requests = list(requests)
        self._index = 0
        self.stream_responses: list[bytes] = []

    def next_request(self) -> bytes:
        """Return the next request; raise EOFError after the last one."""
        if self._index == len(self.stream_requests):
            raise EOFError("EOF")
        req = self.stream_requests[self._index]
        self._index += 1
        return req

    def handle_response(self, body: bytes) -> None:
        self.stream_responses.append(body)

    def messages_received(self) -> int:
        return len(self.stream_responses)

    def messages_sent(self) -> int:
        return self._index


@dataclass(frozen=True)
class UnaryBenchmarkMethod:
    """Makes one unary request per call and checks the response."""

    serializer: Any
    request: Request

    def call(self, transport: Any) -> CallLatencyReport:
        start = time.perf_counter_ns()
        res = transport.call(self.request)
        latency = time.perf_counter_ns() - start
        self.serializer.check_success(res)
        return CallLatencyReport(latency)

    def method_type(self) -> MethodType:
        return MethodType.UNARY


@dataclass(frozen=True)
class StreamBenchmarkMethod:
    """Makes one streaming call per call, replaying the given request messages."""

    serializer: Any
    stream_request: StreamRequest
    stream_request_messages: Sequence[bytes]
    opts: StreamRequestOptions = field(default_factory=StreamRequestOptions)

    def call(self, transport: Any) -> StreamCallReport:
        stream_io = StreamIOBenchmark(self.stream_request_messages)
        start = time.perf_counter_ns()
        make_stream_request(
            transport,
            self.stream_request,
            self.serializer.method_type(),
            stream_io,
            self.opts,
        )
        report = StreamCallReport(
            latency=time.perf_counter_ns() - start,
            stream_messages_received=stream_io.messages_received(),
            stream_messages_sent=stream_io.messages_sent(),
        )
        # Responses are validated after timing so deserializing is not measured.
        for body in stream_io.stream_responses:
            self.serializer.check_success(Response(body=body))
        return report

    def method_type(self) -> MethodType:
        return self.serializer.method_type()


def peer_balancer(
    peers: Sequence[str], rng: Optional[Any] = None
) -> Callable[[int], tuple[str, int]]:
    """Round-robin over peers from a random starting offset."""
    if not peers:
        raise ValueError("no peers to balance over")
    rng = rng if rng is not None else random
    count = len(peers)
    start = rng.randrange(count)

    def peer_for(i: int) -> tuple[str, int]:
        offset = (start + i) % count
        return peers[offset], offset

    return peer_for


def warm_transport(
    caller: BenchmarkCaller,
    transport_factory: Callable[[str], Any],
    peer: str,
    warmup_requests: int,
) -> Any:
    """Create a transport for ``peer`` and make ``warmup_requests`` calls through it."""
    transport = transport_factory(peer)
    for _ in range(warmup_requests):
        caller.call(transport)
    return transport


def warm_transports(
    caller: BenchmarkCaller,
    n: int,
    peers: Sequence[str],
    transport_factory: Callable[[str], Any],
    warmup_requests: int,
    rng: Optional[Any] = None,
) -> list[PeerTransport]:
    """Warm up ``n`` transports concurrently; the first failure, by index, is raised."""
    peer_for = peer_balancer(peers, rng)
    assignments = [peer_for(i) for i in range(n)]
    if not assignments:
        return []

    with ThreadPoolExecutor(max_workers=len(assignments)) as pool:
        futures = [
            pool.submit(warm_transport, caller, transport_factory, peer, warmup_requests)
            for peer, _ in assignments
        ]

    errors = [fut.exception() for fut in futures]
    for err in errors:
        if err is not None:
            raise err
    return [
        PeerTransport(fut.result(), index)
        for fut, (_, index) in zip(futures, assignments)
    ]