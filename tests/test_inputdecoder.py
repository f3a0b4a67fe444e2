import io

import pytest

from yab.encoding.inputdecoder import (
    InputDecodeError,
    JSONInputDecoder,
    YAMLInputDecoder,
    is_json_input,
    new_decoder,
)


def test_is_json_input_valid_json():
    assert is_json_input(io.BufferedReader(io.BytesIO(b"{}"))) is True


def test_is_json_input_yaml():
    assert is_json_input(io.BufferedReader(io.BytesIO(b"test: json"))) is False


def test_is_json_input_does_not_consume():
    reader = io.BufferedReader(io.BytesIO(b"{}"))
    assert is_json_input(reader) is True
    assert reader.read() == b"{}"


def test_is_json_input_empty():
    assert is_json_input(b"") is False


def test_uses_json_decoder():
    reader = new_decoder(io.BytesIO(b"{}{}{}"))
    assert isinstance(reader, JSONInputDecoder)
    assert list(reader) == [b"{}", b"{}", b"{}"]


def test_uses_yaml_decoder():
    reader = new_decoder(io.BytesIO(b"a:b"))
    assert isinstance(reader, YAMLInputDecoder)
    assert reader.next_yaml_bytes() == b"a:b\n"


def test_parse_json_request():
    reader = new_decoder(io.BytesIO(b'{"test":1} {"test":2}'))
    assert reader.next_yaml_bytes() == b'{"test":1}'
    assert reader.next_yaml_bytes() == b'{"test":2}'
    with pytest.raises(EOFError):
        reader.next_yaml_bytes()


def test_parse_yaml_request():
    reader = new_decoder(io.BytesIO(b"test: 1\n---\ntest: 2"))
    assert reader.next_yaml_bytes() == b"test: 1\n"
    assert reader.next_yaml_bytes() == b"test: 2\n"
    with pytest.raises(EOFError):
        reader.next_yaml_bytes()


def test_error_parsing_second_non_json_input():
    reader = new_decoder(io.BytesIO(b'{"test": 1}\n---\ntest: 2'))
    assert reader.next_yaml_bytes() == b'{"test": 1}'
    with pytest.raises(InputDecodeError):
        reader.next_yaml_bytes()


@pytest.mark.parametrize("data", [b"", io.BytesIO(b""), io.BytesIO()])
def test_empty_input(data):
    reader = new_decoder(data)
    with pytest.raises(EOFError):
        reader.next_yaml_bytes()
    assert list(reader) == []


def test_invalid_yaml():
    reader = new_decoder(io.BytesIO(b"a:\n\t\tb"))
    with pytest.raises(InputDecodeError) as info:
        reader.next_yaml_bytes()
    message = str(info.value)
    assert message.startswith("yaml: ")
    assert "cannot start any token" in message


def test_incomplete_json_is_unexpected_eof():
    reader = new_decoder(b"{")
    with pytest.raises(InputDecodeError, match="unexpected EOF"):
        reader.next_yaml_bytes()


def test_json_preserves_raw_bytes():
    reader = new_decoder('{ "a" : [1, 2] }\n\n{"b": "ü"}')
    assert list(reader) == [b'{ "a" : [1, 2] }', '{"b": "ü"}'.encode("utf-8")]


def test_yaml_scalar_document():
    reader = new_decoder(b"42\n---\nhello")
    assert list(reader) == [b"42\n", b"hello\n"]


def test_yaml_keys_sorted():
    reader = new_decoder(b"b: 2\na: 1\n")
    assert reader.next_yaml_bytes() == b"a: 1\nb: 2\n"


def test_text_stream_input():
    reader = new_decoder(io.StringIO('{"x": 1}'))
    assert list(reader) == [b'{"x": 1}']