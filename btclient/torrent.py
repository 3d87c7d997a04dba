"""Metainfo (.torrent) files: parsing, encoding and piece lookups."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .bencode import BencodeError, decode, encode

__all__ = ["HASH_SIZE", "TorrentError", "FileEntry", "Info", "Torrent"]

HASH_SIZE = 20


class TorrentError(ValueError):
    """Raised when metainfo data is missing fields or has the wrong shape."""


def _field(data: dict, key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise TorrentError(f"missing field {key!r}") from None


def _int(data: dict, key: str) -> int:
    value = _field(data, key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TorrentError(f"field {key!r} must be a non-negative integer")
    return value


def _bytes(data: dict, key: str) -> bytes:
    value = _field(data, key)
    if not isinstance(value, (bytes, bytearray)):
        raise TorrentError(f"field {key!r} must be a byte string")
    return bytes(value)


def _text(value: Any, what: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            raise TorrentError(f"{what} is not valid UTF-8") from None
    raise TorrentError(f"{what} must be a string")


def _dict(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise TorrentError(f"{what} must be a dictionary")
    return value


@dataclass(frozen=True)
class FileEntry:
    """One file of a multi-file torrent."""

    length: int
    path: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"length": self.length, "path": list(self.path)}

    @classmethod
    def from_dict(cls, data: Any) -> FileEntry:
        data = _dict(data, "file entry")
        length = _int(data, "length")
        raw_path = _field(data, "path")
        if not isinstance(raw_path, list):
            raise TorrentError("field 'path' must be a list")
        return cls(length, tuple(_text(part, "path component") for part in raw_path))


@dataclass(frozen=True)
class Info:
    """The info dictionary: single-file when ``length`` is set, else multi-file."""

    name: str
    piece_length: int
    pieces: bytes
    length: int | None = None
    files: tuple[FileEntry, ...] | None = None

    def __post_init__(self) -> None:
        if (self.length is None) == (self.files is None):
            raise TorrentError("info must have exactly one of 'length' or 'files'")
        if self.files is not None and not isinstance(self.files, tuple):
            object.__setattr__(self, "files", tuple(self.files))

    @property
    def is_single_file(self) -> bool:
        return self.length is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "piece length": self.piece_length,
            "pieces": self.pieces,
        }
        if self.length is not None:
            result["length"] = self.length
        else:
            result["files"] = [entry.to_dict() for entry in self.files or ()]
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Info:
        data = _dict(data, "info")
        name = _text(_field(data, "name"), "field 'name'")
        piece_length = _int(data, "piece length")
        pieces = _bytes(data, "pieces")
        try:
            length = _int(data, "length")
        except TorrentError:
            if "files" not in data:
                raise TorrentError(
                    "info matches neither the single-file nor the multi-file layout"
                ) from None
            raw_files = data["files"]
            if not isinstance(raw_files, list):
                raise TorrentError("field 'files' must be a list") from None
            files = tuple(FileEntry.from_dict(entry) for entry in raw_files)
            return cls(name, piece_length, pieces, files=files)
        return cls(name, piece_length, pieces, length=length)


@dataclass(frozen=True)
class Torrent:
    """A parsed metainfo file: tracker URL and info dictionary."""

    announce: str
    info: Info

    @classmethod
    def from_bytes(cls, data: bytes) -> Torrent:
        try:
            decoded = decode(data)
        except BencodeError as exc:
            raise TorrentError(f"invalid .torrent data: {exc}") from exc
        decoded = _dict(decoded, "torrent")
        announce = _text(_field(decoded, "announce"), "field 'announce'")
        return cls(announce, Info.from_dict(_field(decoded, "info")))

    @classmethod
    def load(cls, path: str | os.PathLike) -> Torrent:
        return cls.from_bytes(Path(path).read_bytes())

    def to_bytes(self) -> bytes:
        return encode({"announce": self.announce, "info": self.info.to_dict()})

    def info_hash(self) -> bytes:
        """SHA-1 of the bencoded info dictionary."""
        return hashlib.sha1(encode(self.info.to_dict())).digest()

    def piece_length(self) -> int:
        return self.info.piece_length

    def total_length(self) -> int:
        if self.info.length is not None:
            return self.info.length
        return sum(entry.length for entry in self.info.files or ())

    def piece_hash(self, index: int) -> bytes:
        """The expected SHA-1 of piece ``index``."""
        start = index * HASH_SIZE
        end = start + HASH_SIZE
        if index < 0 or end > len(self.info.pieces):
            raise IndexError("piece index out of bounds")
        return self.info.pieces[start:end]