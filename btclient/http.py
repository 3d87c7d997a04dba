"""A minimal blocking HTTP/1.1 GET client, plain http only."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass, field
from urllib.parse import urlsplit

__all__ = ["HttpError", "HttpResponse", "http_get", "parse_http_response"]

TIMEOUT = 5.0

_STATUS_RE = re.compile(r"\+?[0-9]+")


class HttpError(Exception):
    """Raised when an HTTP request fails or its response cannot be parsed."""


@dataclass
class HttpResponse:
    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        """Value of the first header called ``name``, compared case-insensitively."""
        wanted = name.lower()
        return next((v for k, v in self.headers if k.lower() == wanted), None)


def parse_http_response(response: bytes) -> HttpResponse:
    """Split a raw HTTP response into status code, headers and body."""
    split_at = response.find(b"\r\n\r\n")
    if split_at < 0:
        raise HttpError("Invalid HTTP response: no header-body split")
    header_bytes, body = response[: split_at + 4], response[split_at + 4 :]
    try:
        header_text = header_bytes.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HttpError("HTTP headers are not valid UTF-8") from exc

    lines = [line.removesuffix("\r") for line in header_text.split("\n")]
    words = lines[0].split()
    if len(words) < 2:
        raise HttpError("missing status code")
    code_text = words[1]
    if not _STATUS_RE.fullmatch(code_text) or int(code_text) > 0xFFFF:
        raise HttpError(f"invalid status code: {code_text!r}")

    headers = [
        (key, value)
        for key, sep, value in (line.partition(": ") for line in lines[1:])
        if sep
    ]
    return HttpResponse(status_code=int(code_text), headers=headers, body=body)


def _read_all(sock: socket.socket) -> bytes:
    chunks = []
    while chunk := sock.recv(65536):
        chunks.append(chunk)
    return b"".join(chunks)


def http_get(url: str) -> HttpResponse:
    """Fetch ``url`` with a GET request, following redirects."""
    parts = urlsplit(url)
    if parts.scheme != "http":
        raise HttpError("only http:// is supported (not https://)")
    host = parts.hostname
    if not host:
        raise HttpError("missing host")
    try:
        port = parts.port or 80
    except ValueError as exc:
        raise HttpError(f"invalid port in {url!r}") from exc

    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    host_header = f"[{host}]" if ":" in host else host
    request = f"GET {path} HTTP/1.1\r\nHost: {host_header}\r\nConnection: close\r\n\r\n"

    try:
        with socket.create_connection((host, port), timeout=TIMEOUT) as sock:
            sock.sendall(request.encode("utf-8"))
            raw = _read_all(sock)
    except OSError as exc:
        raise HttpError(f"request to {host}:{port} failed: {exc}") from exc

    response = parse_http_response(raw)

    if 300 <= response.status_code < 400:
        location = response.header("location")
        if location is None:
            raise HttpError(
                f"redirect (HTTP {response.status_code}) without Location header"
            )
        return http_get(location)

    return response