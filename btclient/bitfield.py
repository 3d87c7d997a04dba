"""Piece availability bitfield as exchanged between peers."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

__all__ = ["BitField"]


class BitField:
    """A bitfield over ``payload`` whose first ``length`` bits are meaningful.

    Bits are numbered from the most significant bit of the first byte.
    When ``length`` is omitted it is the number of payload bytes.
    """

    def __init__(self, payload: Iterable[int], length: int | None = None) -> None:
        self.payload = bytearray(payload)
        self.length = len(self.payload) if length is None else length

    @classmethod
    def from_bytes(cls, data: bytes) -> BitField:
        """Parse a length-prefixed bitfield: one length byte, then the payload."""
        if not data:
            raise ValueError("empty byte array")
        if data[0] != len(data) - 1:
            raise ValueError("length mismatch in BitField")
        return cls(data[1:], len(data) - 1)

    def to_bytes(self) -> bytes:
        """Serialize as a length byte followed by the payload."""
        if len(self.payload) != self.length:
            raise ValueError(
                f"payload has {len(self.payload)} bytes but length is {self.length}"
            )
        return bytes([self.length & 0xFF]) + bytes(self.payload)

    @staticmethod
    def _locate(index: int) -> tuple[int, int]:
        if index < 0:
            raise IndexError(f"bit index {index} is negative")
        byte, bit = divmod(index, 8)
        return byte, 0x80 >> bit

    def is_set(self, index: int) -> bool:
        byte, mask = self._locate(index)
        return bool(self.payload[byte] & mask)

    def set(self, index: int) -> None:
        byte, mask = self._locate(index)
        self.payload[byte] |= mask

    def unset(self, index: int) -> None:
        byte, mask = self._locate(index)
        self.payload[byte] &= ~mask & 0xFF

    def __len__(self) -> int:
        return self.length

    def __iter__(self) -> Iterator[bool]:
        return (self.is_set(i) for i in range(self.length))

    def is_subset(self, other: BitField) -> bool:
        """True if every bit set here is also set in ``other``."""
        return all(not a or b for a, b in zip(self, other))

    def has_piece(self, index: int) -> bool:
        return self.is_set(index)

    def pieces(self) -> list[int]:
        """Indices of all set bits."""
        return [i for i, bit in enumerate(self) if bit]

    def is_complete(self) -> bool:
        return all(self)

    def is_empty(self) -> bool:
        return not any(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BitField):
            return NotImplemented
        return self.payload == other.payload and self.length == other.length

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"BitField(payload={bytes(self.payload)!r}, length={self.length})"