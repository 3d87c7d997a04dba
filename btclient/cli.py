"""Command line entry point: announce to the tracker, then download from peers."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence

from .logsetup import init_logging
from .session import Session
from .torrent import Torrent, TorrentError
from .tracker import TrackerError, TrackerRequest

__all__ = ["make_peer_id", "main"]

log = logging.getLogger(__name__)

PEER_ID_PREFIX = b"-RU0001-"
DEFAULT_PORT = 6969


def make_peer_id(value: str | None) -> bytes:
    """A 20-byte peer id: ``value`` encoded as UTF-8, or random with a fixed prefix."""
    if value is None:
        return PEER_ID_PREFIX + os.urandom(20 - len(PEER_ID_PREFIX))
    encoded = value.encode("utf-8")
    if len(encoded) != 20:
        raise ValueError("peer_id must be 20 bytes")
    return encoded


def _bounded(limit: int):
    def convert(text: str) -> int:
        try:
            number = int(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"not an integer: {text!r}") from None
        if not 0 <= number <= limit:
            raise argparse.ArgumentTypeError(f"{number} is not between 0 and {limit}")
        return number

    return convert


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bt", description="A BitTorrent client")
    parser.add_argument("-t", "--torrent", required=True, help="path to the .torrent file")
    parser.add_argument("-o", "--output", required=True, help="output file destination")
    parser.add_argument(
        "--peer-id", help="peer id (20 bytes); otherwise randomly generated"
    )
    parser.add_argument(
        "--compact", required=True, type=_bounded(0xFF), help="compact peer list mode (1 or 0)"
    )
    parser.add_argument(
        "-p", "--port", type=_bounded(0xFFFF), help=f"port number (default: {DEFAULT_PORT})"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _parser()
    args = parser.parse_args(argv)
    init_logging()
    log.debug("Starting BitTorrent client with args: %r", args)

    try:
        torrent = Torrent.load(args.torrent)
    except OSError as exc:
        print(f"could not read .torrent file: {exc}", file=sys.stderr)
        return 1
    except TorrentError as exc:
        print(f"invalid .torrent file: {exc}", file=sys.stderr)
        return 1

    try:
        peer_id = make_peer_id(args.peer_id)
    except ValueError as exc:
        parser.error(str(exc))

    request = TrackerRequest(
        info_hash=torrent.info_hash(),
        peer_id=peer_id,
        port=DEFAULT_PORT if args.port is None else args.port,
        uploaded=0,
        downloaded=0,
        left=torrent.total_length(),
        compact=args.compact,
    )
    try:
        response = request.announce(torrent)
    except TrackerError as exc:
        print(f"failed to contact tracker: {exc}", file=sys.stderr)
        return 1

    peers = [peer for peer in response.peers if peer.is_ipv4()]
    if not peers:
        print("No usable peers found.", file=sys.stderr)
        return 1

    stats = Session(torrent, peers, peer_id, args.output).start()
    print(
        f"Download finished: {stats.completed_pieces} / {stats.total_pieces} pieces "
        f"completed. {stats.successful_peers} peers succeeded, "
        f"{stats.failed_peers} failed."
    )
    return 0