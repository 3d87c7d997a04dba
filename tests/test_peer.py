import hashlib
import io
import queue
import socket
import threading
from collections import deque

import pytest

from btclient.bitfield import BitField
from btclient.peer import (
    BLOCK_SIZE,
    BT_PROTOCOL,
    HANDSHAKE_LEN,
    Bitfield,
    Cancel,
    Choke,
    Have,
    Interested,
    KeepAlive,
    MessageId,
    NotInterested,
    Peer,
    PeerError,
    PieceBlock,
    Request,
    Unchoke,
    build_handshake,
    check_handshake,
    read_bitfield,
    read_message,
    serialize,
)

INFO_HASH = bytes(range(20))
OTHER_HASH = bytes(range(20, 40))
PEER_ID = b"-RU0001-123456789012"


@pytest.mark.parametrize(
    "message",
    [
        KeepAlive(),
        Choke(),
        Unchoke(),
        Interested(),
        NotInterested(),
        Have(7),
        Bitfield(b"\xf0\x0f"),
        Request(1, 16384, 16384),
        PieceBlock(2, 0, b"block data"),
        Cancel(3, 32768, 100),
    ],
)
def test_serialize_round_trip(message):
    assert read_message(io.BytesIO(serialize(message))) == message


def test_serialize_wire_bytes():
    assert serialize(KeepAlive()) == b"\x00\x00\x00\x00"
    assert serialize(Interested()) == b"\x00\x00\x00\x01\x02"
    encoded = serialize(Request(1, 2, 3))
    assert encoded[:4] == (13).to_bytes(4, "big")
    assert encoded[4] == MessageId.REQUEST
    assert encoded[5:] == (1).to_bytes(4, "big") + (2).to_bytes(4, "big") + (3).to_bytes(4, "big")


def test_piece_length_prefix_counts_header_and_block():
    block = b"x" * 10
    encoded = serialize(PieceBlock(0, 0, block))
    assert int.from_bytes(encoded[:4], "big") == 1 + 4 + 4 + len(block)
    assert encoded[4] == MessageId.PIECE


def test_serialize_rejects_non_message():
    with pytest.raises(TypeError):
        serialize("choke")


def test_read_messages_in_sequence():
    stream = io.BytesIO(serialize(Unchoke()) + serialize(Have(4)) + serialize(KeepAlive()))
    assert [read_message(stream) for _ in range(3)] == [Unchoke(), Have(4), KeepAlive()]


def test_piece_block_at_maximum_size_is_accepted():
    message = PieceBlock(0, 0, bytes(BLOCK_SIZE))
    assert read_message(io.BytesIO(serialize(message))) == message


def test_piece_block_over_maximum_size_is_rejected():
    encoded = serialize(PieceBlock(0, 0, bytes(BLOCK_SIZE + 1)))
    with pytest.raises(PeerError, match="exceeds maximum"):
        read_message(io.BytesIO(encoded))


def test_unknown_message_id_is_rejected():
    with pytest.raises(PeerError, match="unhandled message id"):
        read_message(io.BytesIO(b"\x00\x00\x00\x01\x09"))


def test_truncated_message_is_rejected():
    with pytest.raises(PeerError):
        read_message(io.BytesIO(serialize(Request(1, 2, 3))[:-1]))


def test_read_bitfield():
    stream = io.BytesIO(serialize(Bitfield(b"\xf0\x0f")))
    assert read_bitfield(stream) == BitField(b"\xf0\x0f")


def test_read_bitfield_rejects_keep_alive():
    with pytest.raises(PeerError, match="keep-alive"):
        read_bitfield(io.BytesIO(serialize(KeepAlive())))


def test_read_bitfield_rejects_other_message():
    with pytest.raises(PeerError, match="expected bitfield"):
        read_bitfield(io.BytesIO(serialize(Have(1))))


def test_build_handshake_layout():
    handshake = build_handshake(INFO_HASH, PEER_ID)
    assert len(handshake) == HANDSHAKE_LEN
    assert handshake[0] == len(BT_PROTOCOL)
    assert handshake[1:20] == BT_PROTOCOL
    assert handshake[20:28] == bytes(8)
    assert handshake[28:48] == INFO_HASH
    assert handshake[48:] == PEER_ID


def test_build_handshake_rejects_short_ids():
    with pytest.raises(ValueError):
        build_handshake(INFO_HASH[:19], PEER_ID)
    with pytest.raises(ValueError):
        build_handshake(INFO_HASH, PEER_ID[:19])


def test_check_handshake_accepts_matching_hash():
    check_handshake(build_handshake(INFO_HASH, PEER_ID), INFO_HASH)
    with pytest.raises(PeerError, match="info_hash"):
        check_handshake(build_handshake(INFO_HASH, PEER_ID), OTHER_HASH)


def test_check_handshake_rejects_bad_pstrlen():
    handshake = bytearray(build_handshake(INFO_HASH, PEER_ID))
    handshake[0] = 18
    with pytest.raises(PeerError, match="pstrlen"):
        check_handshake(bytes(handshake), INFO_HASH)


def _handshake_server(reply_hash, received):
    listener = socket.create_server(("127.0.0.1", 0))

    def serve():
        with listener:
            conn, _ = listener.accept()
            with conn:
                reader = conn.makefile("rb")
                received.append(reader.read(HANDSHAKE_LEN))
                conn.sendall(build_handshake(reply_hash, b"R" * 20) + serialize(Bitfield(b"\xff")))
                while conn.recv(1024):
                    pass
                reader.close()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return listener.getsockname()[1], thread


def test_connect_performs_handshake_and_reads_bitfield():
    received = []
    port, thread = _handshake_server(INFO_HASH, received)
    peer = Peer.connect(("127.0.0.1", port), INFO_HASH, PEER_ID)
    try:
        assert peer.bitfield == BitField(b"\xff")
        assert peer.choked is True
        assert peer.interested is False
    finally:
        peer.close()
    thread.join(5)
    assert received == [build_handshake(INFO_HASH, PEER_ID)]


def test_connect_rejects_wrong_info_hash():
    port, thread = _handshake_server(OTHER_HASH, [])
    with pytest.raises(PeerError, match="info_hash"):
        Peer.connect(("127.0.0.1", port), INFO_HASH, PEER_ID)
    thread.join(5)


def _remote(sock, data, piece_length, seen):
    reader = sock.makefile("rb")
    try:
        seen.append(read_message(reader))
        sock.sendall(serialize(Unchoke()))
        while True:
            message = read_message(reader)
            seen.append(message)
            if isinstance(message, Request):
                start = message.index * piece_length + message.begin
                block = data[start : start + message.length]
                sock.sendall(serialize(PieceBlock(message.index, message.begin, block)))
    except (PeerError, OSError):
        pass
    finally:
        reader.close()
        sock.close()


def _run_peer(bitfield, pending, data, piece_length, piece_hash):
    local, remote = socket.socketpair()
    local.settimeout(5)
    seen = []
    thread = threading.Thread(
        target=_remote, args=(remote, data, piece_length, seen), daemon=True
    )
    thread.start()
    results = queue.Queue()
    peer = Peer(("127.0.0.1", 0), local, bitfield)
    peer.run(piece_length, len(data), piece_hash, pending, results)
    thread.join(5)
    collected = {}
    while not results.empty():
        index, piece = results.get()
        collected[index] = piece
    return collected, seen


DATA = bytes(range(100, 120))
PIECE_LENGTH = 16


def _true_hash(index):
    return hashlib.sha1(DATA[index * PIECE_LENGTH : (index + 1) * PIECE_LENGTH]).digest()


def test_run_downloads_and_verifies_pieces():
    pending = deque([0, 1])
    collected, seen = _run_peer(BitField(b"\xc0"), pending, DATA, PIECE_LENGTH, _true_hash)
    assert collected == {0: DATA[:16], 1: DATA[16:]}
    assert not pending
    assert seen[0] == Interested()
    requests = [m for m in seen if isinstance(m, Request)]
    assert [(r.index, r.begin, r.length) for r in requests] == [(0, 0, 16), (1, 0, 4)]


def test_run_drops_piece_with_wrong_hash():
    pending = deque([0])
    collected, _ = _run_peer(
        BitField(b"\xc0"), pending, DATA, PIECE_LENGTH, lambda index: bytes(20)
    )
    assert collected == {}
    assert not pending


def test_run_requeues_piece_the_peer_lacks():
    pending = deque([1])
    collected, seen = _run_peer(BitField(b"\x80"), pending, DATA, PIECE_LENGTH, _true_hash)
    assert collected == {}
    assert list(pending) == [1]
    assert not any(isinstance(m, Request) for m in seen)


def test_run_stops_on_index_beyond_last_piece():
    pending = deque([5, 0])
    collected, _ = _run_peer(BitField(b"\xff"), pending, DATA, PIECE_LENGTH, _true_hash)
    assert collected == {}
    assert list(pending) == [0]


def test_request_piece_sends_request():
    local, remote = socket.socketpair()
    peer = Peer(("127.0.0.1", 0), local, None)
    reader = remote.makefile("rb")
    try:
        peer.request_piece(3, 16384, 100)
        assert read_message(reader) == Request(3, 16384, 100)
    finally:
        peer.close()
        reader.close()
        remote.close()


def test_peer_read_message_reports_closed_connection():
    local, remote = socket.socketpair()
    peer = Peer(("127.0.0.1", 0), local, None)
    remote.sendall(serialize(Have(9)))
    remote.close()
    try:
        assert peer.read_message() == Have(9)
        with pytest.raises(PeerError):
            peer.read_message()
    finally:
        peer.close()