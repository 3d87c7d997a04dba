"""Piece assembly from blocks and writing finished pieces to disk."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["Piece", "PieceWriter"]

log = logging.getLogger(__name__)


@dataclass
class Piece:
    """A piece being downloaded, collected as blocks keyed by begin offset."""

    index: int
    length: int
    block_size: int = 16 * 1024
    blocks: dict[int, bytes] = field(default_factory=dict)

    def add_block(self, begin: int, data: bytes) -> None:
        self.blocks[begin] = bytes(data)

    def is_complete(self) -> bool:
        return sum(len(block) for block in self.blocks.values()) >= self.length

    def assemble(self) -> bytes | None:
        """Join the blocks into the piece, or return None if incomplete."""
        if not self.is_complete():
            return None
        log.info("assembling piece %d", self.index)
        assembled = bytearray(self.length)
        for begin, data in self.blocks.items():
            if begin > self.length:
                raise ValueError(
                    f"block at offset {begin} starts beyond piece length {self.length}"
                )
            end = min(begin + len(data), self.length)
            assembled[begin:end] = data[: end - begin]
        return bytes(assembled)


class PieceWriter:
    """Writes pieces into an output file preallocated to ``total_length``."""

    def __init__(self, path: str | os.PathLike, piece_length: int, total_length: int) -> None:
        fd = os.open(Path(path), os.O_WRONLY | os.O_CREAT, 0o644)
        self.file = os.fdopen(fd, "wb")
        try:
            self.file.truncate(total_length)
        except OSError:
            self.file.close()
            raise
        self.piece_length = piece_length
        self.total_length = total_length

    def write_piece(self, index: int, data: bytes) -> None:
        log.info("writing piece %d to disk", index)
        self.file.seek(index * self.piece_length)
        self.file.write(data)

    def close(self) -> None:
        self.file.close()

    def __enter__(self) -> PieceWriter:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()