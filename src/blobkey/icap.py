"""Minimal ICAP/1.0 (RFC 3507) message codec for a REQMOD service.

Only what a request-modification service needs is implemented: reading an
ICAP request with its encapsulated HTTP request head and optional chunked
request body, and writing a response carrying either nothing, or an HTTP
request head (plus body when echoing one).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Optional

from blobkey.errors import ICAPError

LOG = logging.getLogger("blobkey.icap")

ICAP_VERSION = "ICAP/1.0"
CRLF = b"\r\n"
MAX_LINE = 64 * 1024
MAX_HEADERS = 200
MAX_CHUNK = 16 * 1024 * 1024

REASONS = {
    100: "Continue",
    200: "OK",
    204: "No Content",
    400: "Bad Request",
    404: "ICAP Service Not Found",
    405: "Method Not Allowed",
    413: "Request Entity Too Large",
    500: "Server Error",
    505: "ICAP Version Not Supported",
}

_HEADER_SECTIONS = ("req-hdr", "res-hdr")
_BODY_SECTIONS = ("req-body", "res-body", "opt-body", "null-body")

Header = tuple[str, str]


def get_header(headers: tuple[Header, ...], name: str, default: Optional[str] = None) -> Optional[str]:
    name = name.lower()
    for k, v in headers:
        if k.lower() == name:
            return v
    return default


@dataclass(frozen=True)
class HTTPRequestHead:
    """Request line and headers of the HTTP request inside a REQMOD."""

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: tuple[Header, ...] = ()

    @property
    def url(self) -> str:
        if self.target.startswith("/"):
            host = get_header(self.headers, "host", "")
            return f"http://{host}{self.target}"
        return self.target

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return get_header(self.headers, name, default)

    def without(self, name: str) -> "HTTPRequestHead":
        """Return a copy with every ``name`` header removed."""
        name = name.lower()
        return replace(self, headers=tuple((k, v) for k, v in self.headers if k.lower() != name))

    def encode(self) -> bytes:
        lines = [f"{self.method} {self.target} {self.version}"]
        lines.extend(f"{k}: {v}" for k, v in self.headers)
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

    @classmethod
    def parse(cls, data: bytes) -> "HTTPRequestHead":
        text = data.decode("latin-1")
        lines = text.split("\r\n")
        parts = lines[0].split(" ")
        if len(parts) != 3 or not parts[2].startswith("HTTP/"):
            raise ICAPError(f"malformed encapsulated request line: {lines[0][:100]!r}")
        return cls(parts[0], parts[1], parts[2], tuple(_parse_header_lines(lines[1:])))


@dataclass
class ICAPRequest:
    method: str
    uri: str
    version: str = ICAP_VERSION
    headers: tuple[Header, ...] = ()
    http_request: Optional[HTTPRequestHead] = None
    body: Optional[bytes] = None

    @property
    def service(self) -> str:
        """Path of the ICAP URI, e.g. ``/reqmod``."""
        rest = self.uri.split("://", 1)[-1]
        slash = rest.find("/")
        if slash < 0:
            return "/"
        return rest[slash:].split("?", 1)[0]

    @property
    def preview(self) -> Optional[int]:
        value = self.get("preview")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def allows_204(self) -> bool:
        allow = self.get("allow", "")
        return "204" in [a.strip() for a in allow.split(",")]

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return get_header(self.headers, name, default)


@dataclass
class ICAPResponse:
    status: int
    headers: list[Header] = field(default_factory=list)
    http_request: Optional[HTTPRequestHead] = None
    body: Optional[bytes] = None

    def encode(self) -> bytes:
        reason = REASONS.get(self.status, "Unknown")
        payload = b""
        if self.http_request is None:
            encapsulated = "null-body=0"
        else:
            head = self.http_request.encode()
            payload = head
            if self.body is None:
                encapsulated = f"req-hdr=0, null-body={len(head)}"
            else:
                encapsulated = f"req-hdr=0, req-body={len(head)}"
                payload += encode_chunked(self.body)
        lines = [f"{ICAP_VERSION} {self.status} {reason}"]
        lines.extend(f"{k}: {v}" for k, v in self.headers)
        lines.append(f"Encapsulated: {encapsulated}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + payload


def encode_chunked(body: bytes) -> bytes:
    out = b""
    if body:
        out += f"{len(body):x}".encode("ascii") + CRLF + body + CRLF
    return out + b"0" + CRLF + CRLF


def _parse_header_lines(lines) -> list[Header]:
    headers = []
    for line in lines:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise ICAPError(f"malformed header line: {line[:100]!r}")
        headers.append((name.strip(), value.strip()))
    return headers


def _read_line(rfile: BinaryIO) -> bytes:
    line = rfile.readline(MAX_LINE + 1)
    if len(line) > MAX_LINE:
        raise ICAPError("line too long", status=413)
    return line


def _read_header_block(rfile: BinaryIO) -> list[str]:
    lines = []
    while True:
        line = _read_line(rfile)
        if not line:
            raise ICAPError("connection closed inside headers")
        line = line.rstrip(b"\r\n")
        if not line:
            return lines
        if len(lines) >= MAX_HEADERS:
            raise ICAPError("too many headers", status=413)
        lines.append(line.decode("latin-1"))


def _read_exact(rfile: BinaryIO, size: int) -> bytes:
    data = rfile.read(size)
    if len(data) != size:
        raise ICAPError("connection closed inside encapsulated message")
    return data


def parse_encapsulated(value: str) -> list[tuple[str, int]]:
    """Parse ``req-hdr=0, req-body=412`` into ordered (section, offset) pairs."""
    sections = []
    for part in value.split(","):
        name, sep, offset = part.strip().partition("=")
        if not sep or not offset.strip().isdigit():
            raise ICAPError(f"malformed Encapsulated header: {value!r}")
        sections.append((name.strip().lower(), int(offset)))
    if not sections or sections[-1][0] not in _BODY_SECTIONS:
        raise ICAPError(f"Encapsulated header must end with a body section: {value!r}")
    offsets = [offset for _, offset in sections]
    if offsets != sorted(offsets):
        raise ICAPError(f"Encapsulated offsets out of order: {value!r}")
    for name, _ in sections[:-1]:
        if name not in _HEADER_SECTIONS:
            raise ICAPError(f"unexpected Encapsulated section {name!r}")
    return sections


def read_chunked(rfile: BinaryIO) -> tuple[bytes, bool]:
    """Read a chunked body. Returns (data, ieof)."""
    data = bytearray()
    while True:
        size_line = _read_line(rfile)
        if not size_line:
            raise ICAPError("connection closed inside chunked body")
        size_text, _, ext = size_line.strip().partition(b";")
        try:
            size = int(size_text, 16)
        except ValueError:
            raise ICAPError(f"malformed chunk size: {size_line[:40]!r}")
        if size < 0 or size > MAX_CHUNK:
            raise ICAPError("chunk too large", status=413)
        if size == 0:
            # trailers, if any, end with an empty line
            while _read_line(rfile).strip():
                pass
            return bytes(data), ext.strip() == b"ieof"
        data += _read_exact(rfile, size)
        if _read_line(rfile).strip():
            raise ICAPError("missing CRLF after chunk data")


def read_request(rfile: BinaryIO) -> Optional[ICAPRequest]:
    """Read one ICAP request from ``rfile``; None on a clean end of stream."""
    line = _read_line(rfile)
    while line in (b"\r\n", b"\n"):
        line = _read_line(rfile)
    if not line:
        return None
    parts = line.decode("latin-1").strip().split(" ")
    if len(parts) != 3:
        raise ICAPError(f"malformed request line: {line[:100]!r}")
    method, uri, version = parts
    if version != ICAP_VERSION:
        raise ICAPError(f"unsupported version {version!r}", status=505)
    headers = tuple(_parse_header_lines(_read_header_block(rfile)))
    request = ICAPRequest(method=method, uri=uri, version=version, headers=headers)

    encapsulated = request.get("encapsulated")
    if not encapsulated:
        return request
    sections = parse_encapsulated(encapsulated)
    for (name, offset), (_, next_offset) in zip(sections, sections[1:]):
        block = _read_exact(rfile, next_offset - offset)
        if name == "req-hdr":
            request.http_request = HTTPRequestHead.parse(block.rstrip(b"\r\n"))
        else:
            LOG.debug("Ignoring encapsulated section %s", name)
    if sections[-1][0] != "null-body":
        request.body, _ = read_chunked(rfile)
    return request
