# btclient

A small BitTorrent client. It reads a `.torrent` file, announces to the
tracker over plain HTTP, connects to the IPv4 peers it gets back, and
downloads and verifies pieces into one output file.

## Installing

```
pip install .
```

This needs Python 3.10 or later and has no third-party dependencies.

## Command line

```
btclient --torrent path/to/file.torrent --output path/to/file.iso --compact 1
```

Options:

- `-t`, `--torrent`: the `.torrent` file to read (required)
- `-o`, `--output`: where to write the downloaded data (required)
- `--compact`: the compact flag sent to the tracker, an integer from 0 to 255 (required)
- `--peer-id`: a peer ID that must be exactly 20 bytes in UTF-8; if omitted, a
  random one starting with `-RU0001-` is used
- `-p`, `--port`: the port reported to the tracker, 0 to 65535 (default 6969)
- `-v`, `--verbose`: accepted, but has no further effect; logging is always at
  debug level

Every run starts a fresh debug log at `logs/debug.log` under the current
directory.

The output file is created (or reused) and sized to the torrent's total
length. Each piece is checked against its SHA-1 hash before it is written; a
piece that fails the check is dropped. At the end the command prints how many
pieces completed and how many peers succeeded or failed, for example:

```
Download finished: 42 / 42 pieces completed. 3 peers succeeded, 1 failed.
```

The command exits with status 1 if the `.torrent` file cannot be read or
parsed, if the tracker cannot be reached or reports an error, or if the
tracker returns no IPv4 peers.

## As a library

```python
from btclient.torrent import Torrent
from btclient.tracker import TrackerRequest
from btclient.session import Session
from btclient.cli import make_peer_id

torrent = Torrent.load("file.torrent")
peer_id = make_peer_id(None)
request = TrackerRequest(
    info_hash=torrent.info_hash(),
    peer_id=peer_id,
    port=6881,
    uploaded=0,
    downloaded=0,
    left=torrent.total_length(),
    compact=1,
)
response = request.announce(torrent)
peers = [p for p in response.peers if p.is_ipv4()]

stats = Session(torrent, peers, peer_id, "file.iso").start()
print(stats.completed_pieces, "/", stats.total_pieces)
```

The building blocks can also be used on their own:

- `btclient.bencode`: `encode` and `decode` for bencoded data, raising
  `BencodeError` on bad input
- `btclient.torrent`: `Torrent`, `Info` and `FileEntry`, with
  `Torrent.from_bytes`, `Torrent.load`, `to_bytes`, `info_hash`,
  `piece_length`, `total_length` and `piece_hash`
- `btclient.bitfield.BitField`: the peer bitfield, with `is_set`, `set`,
  `unset`, `has_piece`, `pieces`, `is_subset`, `is_complete` and `is_empty`
- `btclient.tracker`: `TrackerRequest` (`to_url`, `announce`),
  `TrackerResponse.from_bytes`, `PeerAddress`, and the compact peer list
  helpers `encode_peers` / `decode_peers`
- `btclient.peer`: wire messages (`KeepAlive`, `Choke`, `Unchoke`,
  `Interested`, `NotInterested`, `Have`, `Bitfield`, `Request`, `PieceBlock`,
  `Cancel`), `serialize` and `read_message`, the handshake helpers
  `build_handshake` and `check_handshake`, and the `Peer` connection
- `btclient.download`: `Piece` block assembly and `PieceWriter`, a context
  manager that writes pieces at their offsets in the output file
- `btclient.http`: `http_get`, a plain-HTTP GET that follows redirects, and
  `parse_http_response`
- `btclient.logsetup`: `init_logging`, which sends the package's debug logs to
  a file

## What it does not do

- It only downloads: it never uploads to other peers or accepts incoming
  connections.
- Only `http://` trackers are supported; `https://` and UDP trackers are not.
- The tracker must answer with a compact peer list; dictionary-style peer
  lists are rejected.
- The command line only uses IPv4 peers.
- All data goes into the single output file; multi-file torrents are not
  split into their separate files.
- A download cannot be resumed, and pieces already in the output file are not
  checked or reused.

## Running the tests

```
pip install .[test]
pytest
```