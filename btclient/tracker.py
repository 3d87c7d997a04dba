"""HTTP tracker announce requests and compact peer lists."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

from .bencode import BencodeError, decode
from .http import HttpError, http_get
from .torrent import Torrent

__all__ = [
    "TrackerError",
    "PeerAddress",
    "encode_peers",
    "decode_peers",
    "TrackerResponse",
    "TrackerRequest",
]

log = logging.getLogger(__name__)

_IPV4_ENTRY = 6
_IPV6_ENTRY = 18


class TrackerError(Exception):
    """Raised when a tracker cannot be reached or answers with an error."""


@dataclass(frozen=True)
class PeerAddress:
    """An IPv4 or IPv6 peer address with its port."""

    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port {self.port} is out of range")

    def is_ipv4(self) -> bool:
        return self.ip.version == 4

    @property
    def socket_address(self) -> tuple[str, int]:
        return str(self.ip), self.port

    def __str__(self) -> str:
        if self.is_ipv4():
            return f"{self.ip}:{self.port}"
        return f"[{self.ip}]:{self.port}"


def encode_peers(peers) -> bytes:
    """Pack peers in compact form: address bytes then a big-endian port."""
    return b"".join(peer.ip.packed + peer.port.to_bytes(2, "big") for peer in peers)


def decode_peers(data: bytes) -> list[PeerAddress]:
    """Unpack a compact peer list.

    While at least 18 bytes remain the next entry is read as IPv6,
    otherwise as IPv4; a shorter remainder is an error.
    """
    peers = []
    pos = 0
    while pos < len(data):
        remaining = len(data) - pos
        if remaining >= _IPV6_ENTRY:
            ip = ipaddress.IPv6Address(data[pos : pos + 16])
            size = _IPV6_ENTRY
        elif remaining >= _IPV4_ENTRY:
            ip = ipaddress.IPv4Address(data[pos : pos + 4])
            size = _IPV4_ENTRY
        else:
            raise TrackerError("invalid peer length")
        port = int.from_bytes(data[pos + size - 2 : pos + size], "big")
        peers.append(PeerAddress(ip, port))
        pos += size
    return peers


def _opt_text(data: dict, key: str) -> str:
    value = data.get(key, b"")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    raise TrackerError(f"field {key!r} must be a string")


def _int(data: dict, key: str, default: int | None = None) -> int:
    if key not in data:
        if default is None:
            raise TrackerError(f"missing field {key!r}")
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TrackerError(f"field {key!r} must be a non-negative integer")
    return value


@dataclass
class TrackerResponse:
    interval: int
    peers: list[PeerAddress] = field(default_factory=list)
    failure_reason: str = ""
    tracker_id: str = ""
    complete: int = 0
    incomplete: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> TrackerResponse:
        try:
            decoded = decode(data)
        except BencodeError as exc:
            raise TrackerError(f"invalid tracker response: {exc}") from exc
        if not isinstance(decoded, dict):
            raise TrackerError("tracker response is not a dictionary")
        if "peers" not in decoded:
            raise TrackerError("missing field 'peers'")
        raw_peers = decoded["peers"]
        if not isinstance(raw_peers, (bytes, bytearray)):
            raise TrackerError("field 'peers' must be a compact byte string")
        return cls(
            interval=_int(decoded, "interval"),
            peers=decode_peers(bytes(raw_peers)),
            failure_reason=_opt_text(decoded, "failure_reason"),
            tracker_id=_opt_text(decoded, "tracker_id"),
            complete=_int(decoded, "complete", 0),
            incomplete=_int(decoded, "incomplete", 0),
        )


def _percent_encode(data: bytes) -> str:
    return "".join(
        chr(b) if chr(b).isascii() and chr(b).isalnum() else f"%{b:02X}" for b in data
    )


@dataclass
class TrackerRequest:
    info_hash: bytes
    peer_id: bytes
    port: int = 6881
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0
    compact: int = 1

    def __post_init__(self) -> None:
        if len(self.info_hash) != 20:
            raise ValueError("info_hash must be 20 bytes")
        if len(self.peer_id) != 20:
            raise ValueError("peer_id must be 20 bytes")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port {self.port} is out of range")

    def to_url(self, base_url: str) -> str:
        """The announce URL with this request's query parameters."""
        query = (
            f"info_hash={_percent_encode(self.info_hash)}"
            f"&peer_id={_percent_encode(self.peer_id)}"
            f"&port={self.port}&uploaded={self.uploaded}"
            f"&downloaded={self.downloaded}&left={self.left}&compact={self.compact}"
        )
        log.debug("tracker query: %s", query)
        parts = urlsplit(base_url.rstrip("/"))
        if not parts.scheme:
            raise TrackerError(f"invalid tracker URL: {base_url!r}")
        path = parts.path or ("/" if parts.netloc else "")
        return urlunsplit((parts.scheme.lower(), parts.netloc, path, query, ""))

    def announce(self, torrent: Torrent) -> TrackerResponse:
        """Announce to the torrent's tracker and return its peer list."""
        url = self.to_url(torrent.announce)
        try:
            response = http_get(url)
        except HttpError as exc:
            raise TrackerError(str(exc)) from exc
        if response.status_code != 200:
            raise TrackerError(f"HTTP error {response.status_code}")

        decoded = TrackerResponse.from_bytes(response.body)
        log.debug("tracker response: %r", decoded)
        if decoded.failure_reason:
            raise TrackerError(f"tracker error: {decoded.failure_reason}")
        if decoded.interval == 0:
            raise TrackerError("tracker error: interval is 0")
        if not decoded.peers:
            raise TrackerError("tracker error: no peers")
        return decoded