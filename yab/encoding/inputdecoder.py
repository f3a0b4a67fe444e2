"""Decoders that split request input into successive JSON or YAML bodies."""

from __future__ import annotations

import io
import json
from collections.abc import Iterator
from typing import BinaryIO, TextIO, Union

import yaml

Source = Union[bytes, bytearray, str, BinaryIO, TextIO]

_JSON_WHITESPACE = " \t\n\r"


class InputDecodeError(ValueError):
    """The request input could not be parsed."""


def _reject_constant(name: str) -> float:
    raise ValueError(f"invalid character {name!r} looking for beginning of value")


class JSONInputDecoder:
    """Reads JSON values separated by whitespace, returning each one's raw bytes."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self._decoder = json.JSONDecoder(parse_constant=_reject_constant)
        self._error: InputDecodeError | None = None

    def next_yaml_bytes(self) -> bytes:
        """Return the next body; raise EOFError when there are no more."""
        if self._error is not None:
            raise self._error

        text = self._text
        pos = self._pos
        while pos < len(text) and text[pos] in _JSON_WHITESPACE:
            pos += 1
        self._pos = pos
        if pos >= len(text) or text[pos] in "]}":
            raise EOFError("EOF")

        try:
            _, end = self._decoder.raw_decode(text, pos)
        except json.JSONDecodeError as exc:
            if exc.pos >= len(text):
                self._error = InputDecodeError("unexpected EOF")
            else:
                self._error = InputDecodeError(f"invalid JSON: {exc.msg}")
            raise self._error from exc
        except ValueError as exc:
            self._error = InputDecodeError(str(exc))
            raise self._error from exc

        self._pos = end
        return text[pos:end].encode("utf-8")

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                yield self.next_yaml_bytes()
            except EOFError:
                return


class YAMLInputDecoder:
    """Reads YAML documents separated by ``---``, re-serialising each as YAML."""

    def __init__(self, text: str) -> None:
        self._documents = yaml.safe_load_all(text)
        self._error: InputDecodeError | None = None

    def next_yaml_bytes(self) -> bytes:
        """Return the next body; raise EOFError when there are no more."""
        if self._error is not None:
            raise self._error
        try:
            value = next(self._documents)
        except StopIteration:
            raise EOFError("EOF") from None
        except yaml.YAMLError as exc:
            self._error = InputDecodeError(_yaml_error_message(exc))
            raise self._error from exc

        dumped = yaml.safe_dump(
            value, default_flow_style=False, allow_unicode=True, sort_keys=True
        )
        if dumped.endswith("\n...\n"):
            dumped = dumped[: -len("...\n")]
        return dumped.encode("utf-8")

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                yield self.next_yaml_bytes()
            except EOFError:
                return


def _yaml_error_message(exc: yaml.YAMLError) -> str:
    problem = getattr(exc, "problem", None) or str(exc)
    mark = getattr(exc, "problem_mark", None)
    if mark is not None:
        return f"yaml: line {mark.line + 1}: {problem}"
    return f"yaml: {problem}"


def _read_all(reader: Source) -> bytes:
    if isinstance(reader, (bytes, bytearray)):
        return bytes(reader)
    if isinstance(reader, str):
        return reader.encode("utf-8")
    data = reader.read()
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def is_json_input(reader: Union[bytes, bytearray, io.BufferedReader]) -> bool:
    """Report whether the input starts with ``{``, without consuming it."""
    if isinstance(reader, (bytes, bytearray)):
        head = bytes(reader[:1])
    else:
        head = reader.peek(1)[:1]
    return head == b"{"


def new_decoder(reader: Source) -> Union[JSONInputDecoder, YAMLInputDecoder]:
    """Pick a JSON or YAML decoder according to the first byte of the input."""
    data = _read_all(reader)
    text = data.decode("utf-8")
    if is_json_input(data):
        return JSONInputDecoder(text)
    return YAMLInputDecoder(text)