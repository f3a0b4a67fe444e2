"""Driving streaming RPCs: feeding request messages and collecting responses."""

from __future__ import annotations

import base64
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, TextIO

from yab.encoding.serializers import MethodType, Response, StreamRequest


class StreamError(RuntimeError):
    """A streaming call failed."""


@dataclass
class StreamRequestOptions:
    """Pacing of stream messages, in seconds."""

    interval: float = 0.0
    delay_close_send_stream: float = 0.0


class StreamIO(Protocol):
    def next_request(self) -> bytes: ...

    def handle_response(self, body: bytes) -> None: ...


class ClientStream(Protocol):
    def send_message(self, body: bytes, done: Optional[threading.Event]) -> None: ...

    def receive_message(self, done: Optional[threading.Event]) -> Any: ...

    def close(self, done: Optional[threading.Event]) -> None: ...


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


class StreamIOInitializer:
    """Reads request messages from a stream reader, recording them, and prints responses."""

    def __init__(
        self,
        out: Optional[TextIO] = None,
        serializer: Any = None,
        stream_msg_reader: Any = None,
    ) -> None:
        self.out = out
        self.serializer = serializer
        self.stream_msg_reader = stream_msg_reader
        self.eof_reached = False
        self.stream_requests: list[bytes] = []

    def next_request(self) -> bytes:
        """Return the next request body; raise EOFError once the reader is exhausted."""
        if self.eof_reached:
            raise EOFError("EOF")
        try:
            msg = self.stream_msg_reader.next_body()
        except EOFError:
            self.eof_reached = True
            raise
        except Exception as exc:
            raise StreamError(f"Failed while reading stream input: {exc}") from exc
        self.stream_requests.append(msg)
        return msg

    def handle_response(self, body: bytes) -> None:
        """Deserialize a response message and print it as indented JSON."""
        try:
            res = self.serializer.response(Response(body=body))
        except Exception as exc:
            raise StreamError(f"Failed while serializing stream response: {exc}") from exc
        try:
            text = json.dumps(
                res, indent=2, sort_keys=True, ensure_ascii=False, default=_json_default
            )
        except (TypeError, ValueError) as exc:
            raise StreamError(
                f"Failed to convert map to JSON: {exc}\nMap: {res!r}"
            ) from exc
        if self.out is not None:
            self.out.write(f"{text}\n\n")

    def all_requests(self) -> list[bytes]:
        """Read the remaining requests and return every request seen so far."""
        while not self.eof_reached:
            try:
                self.next_request()
            except EOFError:
                pass
        return list(self.stream_requests)


class IntervalWaiter:
    """Keeps at least ``interval`` seconds between consecutive ``wait`` calls."""

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._last_allowed: Optional[float] = None

    def wait(self, done: Optional[threading.Event] = None) -> None:
        """Block until the interval since the previous call has passed, or ``done`` is set."""
        now = time.monotonic()
        if self._last_allowed is None or now - self._last_allowed >= self.interval:
            self._last_allowed = now
            return

        remaining = self.interval - (now - self._last_allowed)
        if done is None:
            time.sleep(remaining)
        else:
            done.wait(remaining)
        self._last_allowed = time.monotonic()


def send_stream_message(
    stream: ClientStream, body: bytes, done: Optional[threading.Event] = None
) -> None:
    """Send one message; EOFError passes through, other failures become StreamError."""
    try:
        stream.send_message(body, done)
    except EOFError:
        raise
    except Exception as exc:
        raise StreamError(f"Failed while sending stream request: {exc}") from exc


def receive_stream_message(
    stream: ClientStream, done: Optional[threading.Event] = None
) -> bytes:
    """Receive one message body; EOFError marks the end of the stream."""
    try:
        msg = stream.receive_message(done)
    except EOFError:
        raise
    except Exception as exc:
        raise StreamError(f"Failed while receiving stream response: {exc}") from exc

    if isinstance(msg, (bytes, bytearray, memoryview)):
        return bytes(msg)
    try:
        data = msg.read()
    except Exception as exc:
        raise StreamError(f"Failed while reading stream response: {exc}") from exc
    return bytes(data)


def close_send_stream(
    stream: ClientStream, delay: float = 0.0, done: Optional[threading.Event] = None
) -> None:
    """Close the sending side, after ``delay`` seconds unless ``done`` is set first."""
    if delay:
        if done is None:
            time.sleep(delay)
        else:
            done.wait(delay)
    try:
        stream.close(done)
    except Exception as exc:
        raise StreamError(f"Failed to close send stream: {exc}") from exc


def make_server_stream(
    stream: ClientStream, stream_io: StreamIO, done: Optional[threading.Event] = None
) -> None:
    """Send at most one request, then handle every response the server sends."""
    try:
        req = stream_io.next_request()
    except EOFError:
        req = b""
    else:
        try:
            stream_io.next_request()
        except EOFError:
            pass
        else:
            raise StreamError(
                "Request data contains more than 1 message for server-streaming RPC"
            )

    send_stream_message(stream, req, done)
    close_send_stream(stream, 0.0, done)

    while True:
        try:
            body = receive_stream_message(stream, done)
        except EOFError:
            return
        stream_io.handle_response(body)


def make_client_stream(
    stream: ClientStream,
    stream_io: StreamIO,
    opts: StreamRequestOptions,
    done: Optional[threading.Event] = None,
) -> None:
    """Send every request, close the sending side, then handle the single response."""
    waiter = IntervalWaiter(opts.interval)
    while True:
        try:
            body = stream_io.next_request()
        except EOFError:
            break
        waiter.wait(done)
        try:
            send_stream_message(stream, body, done)
        except EOFError:
            break

    close_send_stream(stream, opts.delay_close_send_stream, done)
    stream_io.handle_response(receive_stream_message(stream, done))


def make_bidi_stream(
    stream: ClientStream,
    stream_io: StreamIO,
    opts: StreamRequestOptions,
    done: Optional[threading.Event] = None,
) -> None:
    """Send requests on a background thread while handling responses as they arrive."""
    if done is None:
        done = threading.Event()
    waiter = IntervalWaiter(opts.interval)
    send_errors: list[BaseException] = []

    def send_loop() -> None:
        try:
            while True:
                try:
                    body = stream_io.next_request()
                except EOFError:
                    close_send_stream(stream, opts.delay_close_send_stream, done)
                    return
                except BaseException:
                    # Unblock the receiving side.
                    done.set()
                    raise
                waiter.wait(done)
                send_stream_message(stream, body, done)
        except EOFError:
            pass
        except BaseException as exc:
            send_errors.append(exc)

    sender = threading.Thread(target=send_loop, daemon=True)
    sender.start()

    receive_error: Optional[BaseException] = None
    try:
        while True:
            body = receive_stream_message(stream, done)
            stream_io.handle_response(body)
    except EOFError:
        pass
    except Exception as exc:
        receive_error = exc

    done.set()
    sender.join()

    if send_errors:
        raise send_errors[0]
    if receive_error is not None:
        raise receive_error


def make_stream_request(
    transport: Any,
    stream_request: StreamRequest,
    method_type: MethodType,
    stream_io: StreamIO,
    opts: StreamRequestOptions,
) -> None:
    """Open a stream on the transport and drive it according to the method type."""
    call_stream = getattr(transport, "call_stream", None)
    if call_stream is None:
        protocol = getattr(transport, "protocol", type(transport).__name__)
        if callable(protocol):
            protocol = protocol()
        raise StreamError(
            f"Transport does not support stream calls: {_quote(str(protocol))}"
        )

    done = threading.Event()
    timer: Optional[threading.Timer] = None
    timeout = stream_request.request.timeout
    if timeout:
        timer = threading.Timer(timeout, done.set)
        timer.daemon = True
        timer.start()

    try:
        try:
            stream = call_stream(stream_request)
        except Exception as exc:
            raise StreamError(f"Failed while making stream call: {exc}") from exc

        if method_type == MethodType.BIDIRECTIONAL_STREAM:
            make_bidi_stream(stream, stream_io, opts, done)
        elif method_type == MethodType.CLIENT_STREAM:
            make_client_stream(stream, stream_io, opts, done)
        else:
            make_server_stream(stream, stream_io, done)
    finally:
        if timer is not None:
            timer.cancel()
        done.set()