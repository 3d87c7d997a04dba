"""Peer wire protocol: handshake, messages and the per-peer download loop."""

from __future__ import annotations

import hashlib
import logging
import queue
import socket
import struct
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Union

from .bitfield import BitField
from .download import Piece
from .tracker import PeerAddress

__all__ = [
    "PeerError",
    "MessageId",
    "KeepAlive",
    "Choke",
    "Unchoke",
    "Interested",
    "NotInterested",
    "Have",
    "Bitfield",
    "Request",
    "PieceBlock",
    "Cancel",
    "Message",
    "serialize",
    "read_message",
    "read_bitfield",
    "build_handshake",
    "check_handshake",
    "Peer",
    "BT_PROTOCOL",
    "HANDSHAKE_LEN",
    "BLOCK_SIZE",
]

log = logging.getLogger(__name__)

BT_PROTOCOL = b"BitTorrent protocol"
HANDSHAKE_LEN = 68
RESERVED_LEN = 8
BLOCK_SIZE = 16 * 1024
TIMEOUT = 3.0
BACKOFF = 0.1

_U32 = struct.Struct(">I")
_PIECE_HEADER = 9  # message id, index and begin

# Guards every pending-piece queue shared between peer threads.
_PENDING_LOCK = threading.Lock()


class PeerError(Exception):
    """Raised when a peer connection fails or a peer breaks the protocol."""


class MessageId(IntEnum):
    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8


@dataclass(frozen=True)
class KeepAlive:
    pass


@dataclass(frozen=True)
class Choke:
    pass


@dataclass(frozen=True)
class Unchoke:
    pass


@dataclass(frozen=True)
class Interested:
    pass


@dataclass(frozen=True)
class NotInterested:
    pass


@dataclass(frozen=True)
class Have:
    index: int


@dataclass(frozen=True)
class Bitfield:
    payload: bytes


@dataclass(frozen=True)
class Request:
    index: int
    begin: int
    length: int


@dataclass(frozen=True)
class PieceBlock:
    index: int
    begin: int
    block: bytes


@dataclass(frozen=True)
class Cancel:
    index: int
    begin: int
    length: int


Message = Union[
    KeepAlive,
    Choke,
    Unchoke,
    Interested,
    NotInterested,
    Have,
    Bitfield,
    Request,
    PieceBlock,
    Cancel,
]

_SIMPLE = {
    MessageId.CHOKE: Choke,
    MessageId.UNCHOKE: Unchoke,
    MessageId.INTERESTED: Interested,
    MessageId.NOT_INTERESTED: NotInterested,
}


def _body(message: Message) -> tuple[MessageId, bytes]:
    match message:
        case Choke():
            return MessageId.CHOKE, b""
        case Unchoke():
            return MessageId.UNCHOKE, b""
        case Interested():
            return MessageId.INTERESTED, b""
        case NotInterested():
            return MessageId.NOT_INTERESTED, b""
        case Have(index=index):
            return MessageId.HAVE, _U32.pack(index)
        case Bitfield(payload=payload):
            return MessageId.BITFIELD, bytes(payload)
        case Request(index=index, begin=begin, length=length):
            return MessageId.REQUEST, _U32.pack(index) + _U32.pack(begin) + _U32.pack(length)
        case PieceBlock(index=index, begin=begin, block=block):
            return MessageId.PIECE, _U32.pack(index) + _U32.pack(begin) + bytes(block)
        case Cancel(index=index, begin=begin, length=length):
            return MessageId.CANCEL, _U32.pack(index) + _U32.pack(begin) + _U32.pack(length)
    raise TypeError(f"not a peer message: {message!r}")


def serialize(message: Message) -> bytes:
    """Encode a message as a length prefix, message id and payload."""
    if isinstance(message, KeepAlive):
        return _U32.pack(0)
    message_id, payload = _body(message)
    return _U32.pack(1 + len(payload)) + bytes([message_id]) + payload


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    try:
        while remaining:
            chunk = reader.read(remaining)
            if not chunk:
                raise PeerError(
                    f"connection closed with {remaining} of {size} bytes unread"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
    except OSError as exc:
        raise PeerError(f"read failed: {exc}") from exc
    return b"".join(chunks)


def _read_u32(reader: BinaryIO) -> int:
    return _U32.unpack(_read_exact(reader, 4))[0]


def read_message(reader: BinaryIO) -> Message:
    """Read one message from a binary stream."""
    length = _read_u32(reader)
    log.debug("message length: %d", length)
    if length == 0:
        return KeepAlive()

    message_id = _read_exact(reader, 1)[0]
    log.debug("message id: %d", message_id)

    if message_id in _SIMPLE:
        return _SIMPLE[MessageId(message_id)]()
    if message_id == MessageId.HAVE:
        return Have(_read_u32(reader))
    if message_id == MessageId.BITFIELD:
        return Bitfield(_read_exact(reader, length - 1))
    if message_id in (MessageId.REQUEST, MessageId.CANCEL):
        index, begin, block_length = (_read_u32(reader) for _ in range(3))
        cls = Request if message_id == MessageId.REQUEST else Cancel
        return cls(index, begin, block_length)
    if message_id == MessageId.PIECE:
        if length < _PIECE_HEADER:
            raise PeerError(f"piece message too short: {length} bytes")
        index = _read_u32(reader)
        begin = _read_u32(reader)
        block_len = length - _PIECE_HEADER
        if block_len > BLOCK_SIZE:
            raise PeerError("block length exceeds maximum size")
        return PieceBlock(index, begin, _read_exact(reader, block_len))
    raise PeerError(f"unhandled message id: {message_id}")


def read_bitfield(reader: BinaryIO) -> BitField:
    """Read the bitfield message a peer sends right after the handshake."""
    length = _read_u32(reader)
    log.debug("bitfield length: %d", length)
    if length == 0:
        raise PeerError("keep-alive received instead of bitfield")
    message_id = _read_exact(reader, 1)[0]
    log.debug("message id: %d", message_id)
    if message_id != MessageId.BITFIELD:
        raise PeerError(f"expected bitfield, got message_id {message_id}")
    return BitField(_read_exact(reader, length - 1))


def build_handshake(info_hash: bytes, peer_id: bytes) -> bytes:
    """The 68-byte handshake for ``info_hash`` from ``peer_id``."""
    if len(info_hash) != 20:
        raise ValueError("info_hash must be 20 bytes")
    if len(peer_id) != 20:
        raise ValueError("peer_id must be 20 bytes")
    return (
        bytes([len(BT_PROTOCOL)])
        + BT_PROTOCOL
        + bytes(RESERVED_LEN)
        + bytes(info_hash)
        + bytes(peer_id)
    )


def check_handshake(response: bytes, info_hash: bytes) -> None:
    """Raise PeerError unless ``response`` is a handshake for ``info_hash``."""
    if len(response) != HANDSHAKE_LEN:
        raise PeerError(f"handshake must be {HANDSHAKE_LEN} bytes, got {len(response)}")
    pstrlen = response[0]
    if pstrlen != len(BT_PROTOCOL):
        raise PeerError(f"invalid pstrlen: {pstrlen}")
    received = response[28:48]
    if received != bytes(info_hash):
        raise PeerError(f"invalid info_hash: {received.hex()}")


def _has_piece(bitfield: BitField, index: int) -> bool:
    return index < len(bitfield.payload) * 8 and bitfield.has_piece(index)


class Peer:
    """A connected peer that has completed the handshake."""

    def __init__(
        self,
        addr: PeerAddress | tuple[str, int],
        sock: socket.socket,
        bitfield: BitField | None,
    ) -> None:
        self.addr = addr
        self.sock = sock
        self.reader = sock.makefile("rb", buffering=0)
        self.bitfield = bitfield
        self.choked = True
        self.interested = False

    @classmethod
    def connect(
        cls, addr: PeerAddress | tuple[str, int], info_hash: bytes, peer_id: bytes
    ) -> Peer:
        """Connect, exchange handshakes and read the peer's bitfield."""
        log.debug("connecting to peer: %s", addr)
        handshake = build_handshake(info_hash, peer_id)
        target = addr.socket_address if isinstance(addr, PeerAddress) else addr
        try:
            sock = socket.create_connection(target, timeout=TIMEOUT)
        except OSError as exc:
            raise PeerError(f"could not connect to {addr}: {exc}") from exc

        reader = sock.makefile("rb", buffering=0)
        try:
            sock.sendall(handshake)
            check_handshake(_read_exact(reader, HANDSHAKE_LEN), info_hash)
            log.debug("handshake successful")
            bitfield = read_bitfield(reader)
        except OSError as exc:
            reader.close()
            sock.close()
            raise PeerError(f"handshake with {addr} failed: {exc}") from exc
        except BaseException:
            reader.close()
            sock.close()
            raise
        reader.close()
        return cls(addr, sock, bitfield)

    def send_message(self, message: Message) -> None:
        try:
            self.sock.sendall(serialize(message))
        except OSError as exc:
            raise PeerError(f"send to {self.addr} failed: {exc}") from exc

    def read_message(self) -> Message:
        return read_message(self.reader)

    def request_piece(self, piece_index: int, block_offset: int, block_length: int) -> None:
        self.send_message(Request(piece_index, block_offset, block_length))

    def run(
        self,
        piece_length: int,
        total_length: int,
        piece_hash: Callable[[int], bytes],
        pending: deque[int],
        results: queue.Queue,
    ) -> None:
        """Download pieces taken from ``pending`` until none are left for this peer.

        Verified pieces are put on ``results`` as ``(index, data)``. Pieces the
        peer lacks go back on ``pending`` for other peers. The connection is
        closed when this returns.
        """
        try:
            self._download(piece_length, total_length, piece_hash, pending, results)
        finally:
            self.close()

    def _download(
        self,
        piece_length: int,
        total_length: int,
        piece_hash: Callable[[int], bytes],
        pending: deque[int],
        results: queue.Queue,
    ) -> None:
        try:
            self.send_message(Interested())
        except PeerError:
            pass
        self.interested = True

        pieces: dict[int, Piece] = {}
        total_pieces = -(-total_length // piece_length)
        rejected: set[int] = set()

        while True:
            if self.choked:
                try:
                    message = self.read_message()
                except PeerError:
                    break
                if isinstance(message, Unchoke):
                    self.choked = False
                else:
                    continue

            with _PENDING_LOCK:
                if not pending:
                    break
                index = pending.popleft()

            log.info("Requesting piece %d from %s", index, self.addr)

            if index in pieces:
                log.debug("Already have piece %d, skipping", index)
                continue

            if index in rejected:
                with _PENDING_LOCK:
                    pending.append(index)
                    nothing_left = all(i in rejected for i in pending)
                if nothing_left:
                    log.debug("Peer %s has none of the remaining pieces", self.addr)
                    break
                continue

            if index >= total_pieces:
                log.debug("All pieces downloaded, exiting")
                break

            if self.bitfield is not None and not _has_piece(self.bitfield, index):
                log.debug("Peer %s does not have piece %d, requeuing", self.addr, index)
                rejected.add(index)
                time.sleep(BACKOFF)
                with _PENDING_LOCK:
                    pending.append(index)
                continue

            piece_len = min(piece_length, total_length - index * piece_length)

            for offset in range(0, piece_len, BLOCK_SIZE):
                try:
                    self.request_piece(index, offset, min(BLOCK_SIZE, piece_len - offset))
                except PeerError:
                    break

            self._collect(index, piece_len, pieces, piece_hash, results)

    def _collect(
        self,
        index: int,
        piece_len: int,
        pieces: dict[int, Piece],
        piece_hash: Callable[[int], bytes],
        results: queue.Queue,
    ) -> None:
        while True:
            try:
                message = self.read_message()
            except PeerError:
                return
            if isinstance(message, PieceBlock) and message.index == index:
                entry = pieces.setdefault(index, Piece(index, piece_len, BLOCK_SIZE))
                entry.add_block(message.begin, message.block)
                if entry.is_complete():
                    data = entry.assemble()
                    if data is not None and hashlib.sha1(data).digest() == bytes(
                        piece_hash(index)
                    ):
                        results.put((index, data))
                    return
            elif isinstance(message, Choke):
                self.choked = True
                return

    def close(self) -> None:
        self.reader.close()
        self.sock.close()

    def __repr__(self) -> str:
        return f"Peer(addr={self.addr!r}, choked={self.choked}, interested={self.interested})"