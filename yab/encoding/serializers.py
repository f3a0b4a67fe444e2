"""Request and response serializers for the JSON, raw and gRPC health encodings."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union


class EncodingError(ValueError):
    """A request or response could not be serialized or deserialized."""


class MethodType(enum.IntEnum):
    """The kind of RPC a method is."""

    UNARY = 1
    CLIENT_STREAM = 2
    SERVER_STREAM = 3
    BIDIRECTIONAL_STREAM = 4


class Encoding(str, enum.Enum):
    """The representation of data on the wire."""

    UNSPECIFIED = ""
    JSON = "json"
    THRIFT = "thrift"
    RAW = "raw"
    PROTOBUF = "proto"

    def __str__(self) -> str:
        return self.value


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def parse_encoding(text: Union[str, bytes]) -> Encoding:
    """Parse an encoding name case-insensitively."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    lowered = text.lower()
    try:
        return Encoding(lowered)
    except ValueError:
        raise ValueError(f"unknown encoding: {_quote(lowered)}") from None


def split_method(full_method: str) -> tuple[str, str]:
    """Split ``package.Service/Method`` into its service and method parts."""
    parts = full_method.split("/")
    if len(parts) == 1:
        return parts[0], ""
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(
        f"invalid proto method {_quote(full_method)}, "
        "expected form package.Service/Method"
    )


def _procedure_name(service: str, method: str) -> str:
    return f"{service}::{method}"


@dataclass
class Request:
    """An outgoing request."""

    method: str
    body: bytes = b""
    timeout: Optional[float] = None
    target_service: str = ""
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """A received response."""

    body: bytes = b""


@dataclass
class StreamRequest:
    """The root request of a streaming call."""

    request: Request


class Serializer(Protocol):
    def encoding(self) -> Encoding: ...

    def method_type(self) -> MethodType: ...

    def request(self, body: Optional[bytes]) -> Request: ...

    def response(self, res: Response) -> Any: ...

    def check_success(self, res: Optional[Response]) -> None: ...


def _parse_json(data: Optional[bytes]) -> Any:
    try:
        return json.loads(data or b"")
    except (ValueError, UnicodeDecodeError) as exc:
        raise EncodingError(f"failed to parse JSON: {exc}") from exc


@dataclass(frozen=True)
class JSONSerializer:
    """Serializer for JSON bodies."""

    method_name: str

    def encoding(self) -> Encoding:
        return Encoding.JSON

    def method_type(self) -> MethodType:
        return MethodType.UNARY

    def request(self, body: Optional[bytes]) -> Request:
        """Validate the JSON and re-encode it compactly with sorted keys."""
        data = _parse_json(body)
        encoded = json.dumps(
            data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
        return Request(method=self.method_name, body=encoded.encode("utf-8"))

    def response(self, res: Response) -> Any:
        return _parse_json(res.body)

    def check_success(self, res: Response) -> None:
        self.response(res)


@dataclass(frozen=True)
class RawSerializer:
    """Serializer that passes bytes through untouched."""

    method_name: str

    def encoding(self) -> Encoding:
        return Encoding.RAW

    def method_type(self) -> MethodType:
        return MethodType.UNARY

    def request(self, body: Optional[bytes]) -> Request:
        return Request(method=self.method_name, body=bytes(body or b""))

    def response(self, res: Response) -> bytes:
        return res.body

    def check_success(self, res: Optional[Response]) -> None:
        """Any raw body is a success; only a body that is not bytes is rejected."""
        if res is not None and not isinstance(
            res.body, (bytes, bytearray, memoryview)
        ):
            raise EncodingError(
                f"raw response body must be bytes, got {type(res.body).__name__}"
            )


_HEALTH_SERVICE = "grpc.health.v1.Health"
_HEALTH_METHOD = "Check"
_SERVING_STATUS = {0: "UNKNOWN", 1: "SERVING", 2: "NOT_SERVING", 3: "SERVICE_UNKNOWN"}


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise EncodingError("unexpected EOF")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & 0xFFFFFFFFFFFFFFFF, pos
        shift += 7
        if shift >= 70:
            raise EncodingError("proto: integer overflow")


def _decode_fields(data: bytes) -> list[tuple[int, int, Union[int, bytes]]]:
    fields: list[tuple[int, int, Union[int, bytes]]] = []
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        number, wire_type = tag >> 3, tag & 0x7
        if number <= 0:
            raise EncodingError("proto: invalid field number")
        value: Union[int, bytes]
        if wire_type == 0:
            value, pos = _read_varint(data, pos)
        elif wire_type in (1, 5):
            size = 8 if wire_type == 1 else 4
            if pos + size > len(data):
                raise EncodingError("unexpected EOF")
            value = int.from_bytes(data[pos : pos + size], "little")
            pos += size
        elif wire_type == 2:
            length, pos = _read_varint(data, pos)
            if pos + length > len(data):
                raise EncodingError("unexpected EOF")
            value = data[pos : pos + length]
            pos += length
        else:
            raise EncodingError(f"proto: cannot parse wire type {wire_type}")
        fields.append((number, wire_type, value))
    return fields


@dataclass(frozen=True)
class ProtoHealthSerializer:
    """Serializer for the standard gRPC health check."""

    service_name: Union[str, bytes] = ""

    def encoding(self) -> Encoding:
        return Encoding.PROTOBUF

    def method_type(self) -> MethodType:
        return MethodType.UNARY

    def _service_bytes(self) -> bytes:
        name = self.service_name
        try:
            if isinstance(name, bytes):
                name.decode("utf-8")
                return name
            return name.encode("utf-8")
        except (UnicodeDecodeError, UnicodeEncodeError) as exc:
            raise EncodingError(
                "proto: field grpc.health.v1.HealthCheckRequest.service "
                "contains invalid UTF-8"
            ) from exc

    def request(self, body: Optional[bytes]) -> Request:
        if body:
            raise EncodingError("cannot specify --health and a request body")
        service = self._service_bytes()
        encoded = b""
        if service:
            encoded = b"\x0a" + _encode_varint(len(service)) + service
        return Request(
            method=_procedure_name(_HEALTH_SERVICE, _HEALTH_METHOD), body=encoded
        )

    def response(self, res: Response) -> dict[str, Any]:
        status = 0
        for number, wire_type, value in _decode_fields(res.body or b""):
            if number == 1 and wire_type == 0:
                status = int(value)
        if status == 0:
            return {}
        return {"status": _SERVING_STATUS.get(status, status)}

    def check_success(self, res: Response) -> None:
        self.response(res)