"""A small BitTorrent client: torrent parsing, HTTP tracker announce and piece download from peers."""

__version__ = "0.1.0"