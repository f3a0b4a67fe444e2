# yab

A library of building blocks for making and benchmarking RPC requests:
request serializers, decoding of multi-message request input, drivers for
streaming calls, benchmark state with latency quantiles, and benchmark
reports in plain text or JSON.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

| Module | Purpose |
| --- | --- |
| `yab.encoding.notfound` | `NotFound`, a `LookupError` that names what was not found and lists what is available |
| `yab.encoding.inputdecoder` | `new_decoder` picks a `JSONInputDecoder` or `YAMLInputDecoder` for a sequence of request bodies; `is_json_input` |
| `yab.encoding.serializers` | `Encoding`, `MethodType`, `Request`, `Response`, `StreamRequest`, `JSONSerializer`, `RawSerializer`, `ProtoHealthSerializer`, `parse_encoding`, `split_method` |
| `yab.streaming` | `make_stream_request` and the server, client and bidirectional stream drivers, `StreamIOInitializer`, `IntervalWaiter`, `StreamRequestOptions`, `StreamError` |
| `yab.state` | `BenchmarkState` (counts, errors, latency quantiles), `NoopStatsClient`, `error_to_message`, `format_duration`, `print_latencies` |
| `yab.caller` | `UnaryBenchmarkMethod`, `StreamBenchmarkMethod`, `StreamIOBenchmark`, `peer_balancer`, `warm_transport`, `warm_transports` |
| `yab.benchmark` | `BenchmarkOptions`, `run_benchmark`, `run_worker`, `print_parameters`, `output_plaintext`, `output_json`, `BenchmarkError` |

## Examples

### Decoding several request bodies

Input that starts with `{` is read as a sequence of JSON values separated by
whitespace; anything else is read as YAML documents separated by `---`.
Decoders are iterable, and `next_yaml_bytes()` raises `EOFError` when the
input is exhausted.

```python
import io
from yab.encoding.inputdecoder import new_decoder

for body in new_decoder(io.BytesIO(b'{"test":1} {"test":2}')):
    print(body)        # b'{"test":1}', then b'{"test":2}'

for body in new_decoder(io.BytesIO(b"test: 1\n---\ntest: 2")):
    print(body)        # b'test: 1\n', then b'test: 2\n'
```

### Serializing requests

```python
from yab.encoding.serializers import (
    Encoding, JSONSerializer, ProtoHealthSerializer, RawSerializer, parse_encoding,
)

request = JSONSerializer("method").request(b'{\n  "key": 123\n}')
print(request.body)    # b'{"key":123}'

raw = RawSerializer("method").request(b"asd")
print(raw.body)        # b'asd'

health = ProtoHealthSerializer("x").request(None)
print(health.method, health.body)   # grpc.health.v1.Health::Check b'\n\x01x'

assert parse_encoding("Thrift") is Encoding.THRIFT   # unknown names raise ValueError
```

`JSONSerializer` re-encodes the request compactly with sorted keys and
raises `EncodingError` on invalid JSON. `ProtoHealthSerializer` builds a
gRPC health check request and decodes its response into `{}` or
`{"status": "SERVING"}` and the like.

### Helpful lookup errors

```python
from yab.encoding.notfound import NotFound

err = NotFound(
    encoding="Thrift",
    search_type="method",
    search="echo",
    example="--method Service::Method",
    look_in='service "Bar"',
    available=["m2", "m1"],
)
print(err)
# Thrift service "Bar" does not contain method "echo". Available Thrift methods in service "Bar":
# 	m1
# 	m2
```

### Collecting benchmark results

```python
from yab.state import BenchmarkState, NoopStatsClient, error_to_message

state = BenchmarkState(NoopStatsClient())
for micros in range(10001):
    state.record_latency(micros * 1000)      # nanoseconds

state.get_quantile(0.5)                      # 5000000 (5 ms)
error_to_message(Exception("has an ip 10.2.40.5"))   # "has an ip X.X.X.X"
```

Quantiles are interpolated linearly between recorded samples. Errors are
grouped after every run of digits is replaced by a single `X`, so
"failed after 91ms" and "failed after 1020ms" are counted together.

### Running a benchmark

`run_benchmark(out, options, caller, transport_factory, peers)` takes:

- a caller: `UnaryBenchmarkMethod(serializer, request)` or
  `StreamBenchmarkMethod(serializer, stream_request, messages)`;
- `transport_factory(peer)`, which returns a transport object. Unary calls
  use `transport.call(request)` and expect a `Response`; streaming calls use
  `transport.call_stream(stream_request)`, which must return a stream with
  `send_message(body, done)`, `receive_message(done)` and `close(done)`;
- the list of peers, and `BenchmarkOptions`.

Connections (by default twice the CPU count) are assigned to peers
round-robin from a random starting peer and warmed up concurrently before
the run. Each connection runs `concurrency` worker threads. The run ends at
the request limit, the duration limit, or `rps × duration`, whichever comes
first, or on Ctrl-C when run from the main thread. The report goes to `out`
as text, or as one JSON document when `format` is `json`; an unrecognised
format prints a warning on stderr and falls back to text. An optional stats
client with `inc(name)` and `timing(name, duration)` receives `success`,
`error` and `latency` metrics, also under `peer.N.` when `per_peer_stats`
is set. Invalid options or failed warm-up raise `BenchmarkError`.

## What the package does not do

- It has no command-line program; everything is used from Python.
- It contains no network transports. Callers supply their own through
  `transport_factory`.
- It has no Thrift serializer and no protobuf serializer for arbitrary
  services; of protobuf it covers only the gRPC health check.
- It does not send metrics anywhere itself; the stats client is supplied by
  the caller (`NoopStatsClient` discards everything).