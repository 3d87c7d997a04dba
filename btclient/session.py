"""A download session: one worker thread per peer, pieces written as they arrive."""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .download import PieceWriter
from .peer import Peer, PeerError
from .torrent import Torrent
from .tracker import PeerAddress

__all__ = ["SessionStats", "Session"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStats:
    """Outcome of a finished session."""

    total_pieces: int
    completed_pieces: int
    failed_peers: int
    successful_peers: int


@dataclass(frozen=True)
class _PeerDone:
    ok: bool


class Session:
    """Downloads a torrent's pieces from a set of peers into one output file."""

    def __init__(
        self,
        torrent: Torrent,
        peers: Iterable[PeerAddress | tuple[str, int]],
        peer_id: bytes,
        output_path: str | os.PathLike,
    ) -> None:
        self.torrent = torrent
        self.peers = list(peers)
        self.peer_id = bytes(peer_id)
        self.output_path = Path(output_path)

    def start(self) -> SessionStats:
        """Run the download until every piece is written or every peer is done."""
        piece_len = self.torrent.piece_length()
        total_len = self.torrent.total_length()
        if piece_len <= 0:
            raise ValueError("piece length must be positive")
        total_pieces = -(-total_len // piece_len)

        pending: deque[int] = deque(range(total_pieces))
        results: queue.Queue = queue.Queue()
        info_hash = self.torrent.info_hash()
        outcomes: list[bool] = []
        completed = 0

        with PieceWriter(self.output_path, piece_len, total_len) as writer:
            threads = [
                threading.Thread(
                    target=self._work,
                    args=(addr, info_hash, piece_len, total_len, pending, results),
                    daemon=True,
                )
                for addr in self.peers
            ]
            for thread in threads:
                thread.start()

            while completed < total_pieces and len(outcomes) < len(threads):
                item = results.get()
                if isinstance(item, _PeerDone):
                    outcomes.append(item.ok)
                    continue
                index, data = item
                writer.write_piece(index, data)
                completed += 1
                log.info("Completed piece %d (%d/%d)", index, completed, total_pieces)

            for thread in threads:
                thread.join()

        while not results.empty():
            item = results.get_nowait()
            if isinstance(item, _PeerDone):
                outcomes.append(item.ok)

        log.info("Download complete: %d pieces written", completed)
        successful = sum(outcomes)
        return SessionStats(
            total_pieces=total_pieces,
            completed_pieces=completed,
            failed_peers=len(outcomes) - successful,
            successful_peers=successful,
        )

    def _work(
        self,
        addr: PeerAddress | tuple[str, int],
        info_hash: bytes,
        piece_len: int,
        total_len: int,
        pending: deque[int],
        results: queue.Queue,
    ) -> None:
        ok = False
        try:
            peer = Peer.connect(addr, info_hash, self.peer_id)
            peer.run(piece_len, total_len, self.torrent.piece_hash, pending, results)
            ok = True
        except PeerError as exc:
            log.warning("Could not connect to peer: %s (%s)", addr, exc)
        except Exception:
            log.exception("Worker for peer %s failed", addr)
        finally:
            results.put(_PeerDone(ok))