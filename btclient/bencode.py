"""Bencode encoding and decoding.

Byte strings decode to ``bytes``. Dictionary keys decode to ``str`` using
UTF-8 with ``surrogateescape``, so any key survives a decode/encode round
trip unchanged. Encoding sorts dictionary keys by their raw bytes, as the
format requires.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = ["BencodeError", "encode", "decode"]

_INT_RE = re.compile(rb"-?(0|[1-9][0-9]*)")
_LEN_RE = re.compile(rb"0|[1-9][0-9]*")


class BencodeError(ValueError):
    """Raised when data cannot be encoded or decoded as bencode."""


def _key_bytes(key: Any) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8", "surrogateescape")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise BencodeError(f"dictionary keys must be str or bytes, not {type(key).__name__}")


def _encode_into(value: Any, out: list[bytes]) -> None:
    if isinstance(value, bool):
        raise BencodeError("booleans cannot be bencoded")
    if isinstance(value, int):
        out.append(b"i%de" % value)
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        out.append(b"%d:" % len(raw))
        out.append(raw)
    elif isinstance(value, str):
        _encode_into(value.encode("utf-8", "surrogateescape"), out)
    elif isinstance(value, (list, tuple)):
        out.append(b"l")
        for item in value:
            _encode_into(item, out)
        out.append(b"e")
    elif isinstance(value, dict):
        out.append(b"d")
        for raw_key, item in sorted(
            ((_key_bytes(k), v) for k, v in value.items()), key=lambda kv: kv[0]
        ):
            _encode_into(raw_key, out)
            _encode_into(item, out)
        out.append(b"e")
    else:
        raise BencodeError(f"cannot bencode a value of type {type(value).__name__}")


def encode(value: Any) -> bytes:
    """Encode ints, byte strings, strings, lists and dicts as bencode."""
    out: list[bytes] = []
    _encode_into(value, out)
    return b"".join(out)


def _decode_string(data: bytes, pos: int) -> tuple[bytes, int]:
    colon = data.find(b":", pos)
    if colon < 0:
        raise BencodeError(f"unterminated string length at offset {pos}")
    digits = data[pos:colon]
    if not _LEN_RE.fullmatch(digits):
        raise BencodeError(f"invalid string length {digits!r} at offset {pos}")
    start = colon + 1
    end = start + int(digits)
    if end > len(data):
        raise BencodeError(f"string at offset {pos} runs past the end of the data")
    return data[start:end], end


def _decode_at(data: bytes, pos: int) -> tuple[Any, int]:
    if pos >= len(data):
        raise BencodeError("unexpected end of data")
    marker = data[pos : pos + 1]
    if marker == b"i":
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise BencodeError(f"unterminated integer at offset {pos}")
        text = data[pos + 1 : end]
        if not _INT_RE.fullmatch(text) or text == b"-0":
            raise BencodeError(f"invalid integer {text!r} at offset {pos}")
        return int(text), end + 1
    if marker == b"l":
        items = []
        pos += 1
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated list")
            if data[pos : pos + 1] == b"e":
                return items, pos + 1
            item, pos = _decode_at(data, pos)
            items.append(item)
    if marker == b"d":
        result: dict[str, Any] = {}
        pos += 1
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated dictionary")
            if data[pos : pos + 1] == b"e":
                return result, pos + 1
            if not data[pos : pos + 1].isdigit():
                raise BencodeError(f"dictionary key at offset {pos} is not a string")
            raw_key, pos = _decode_string(data, pos)
            result[raw_key.decode("utf-8", "surrogateescape")], pos = _decode_at(data, pos)
    if marker.isdigit():
        return _decode_string(data, pos)
    raise BencodeError(f"unexpected byte {marker!r} at offset {pos}")


def decode(data: bytes | bytearray | memoryview) -> Any:
    """Decode one complete bencoded value; trailing data is an error."""
    raw = bytes(data)
    try:
        value, end = _decode_at(raw, 0)
    except RecursionError as exc:
        raise BencodeError("data is nested too deeply") from exc
    if end != len(raw):
        raise BencodeError(f"trailing data after offset {end}")
    return value