"""Request-line parsing and the header rewrite applied to forwarded requests."""

from __future__ import annotations

from typing import NamedTuple, Optional

from .uri import ParsedURI

CRLF = b"\r\n"


class RequestLine(NamedTuple):
    method: str
    target: str
    version: str

    @property
    def is_get(self) -> bool:
        return self.method.upper() == "GET"


def parse_request_line(line: bytes) -> Optional[RequestLine]:
    """Split ``METHOD TARGET VERSION``; ``None`` for a blank line.

    Missing fields come back empty and fields past the third are ignored,
    so the method can always be checked.
    """
    parts = line.decode("latin-1").split()
    if not parts:
        return None
    method, target, version = (parts + ["", ""])[:3]
    return RequestLine(method, target, version)


def is_end_of_headers(line: bytes) -> bool:
    return line in (b"\r\n", b"\n")


class HeaderRewriter:
    """Builds the header block sent to the origin.

    ``Host``, ``User-Agent``, ``Connection`` and ``Proxy-Connection`` from
    the client are dropped; the proxy supplies its own.  Every other
    client header line is passed through byte-for-byte.
    """

    DROP_HEADERS: frozenset[str] = frozenset(
        {"host", "user-agent", "connection", "proxy-connection"}
    )

    __slots__ = ("user_agent",)

    def __init__(self, user_agent: str):
        self.user_agent = user_agent

    @classmethod
    def should_drop(cls, line: bytes) -> bool:
        """Return ``True`` for client header lines the proxy replaces."""
        name, sep, _ = line.partition(b":")
        if not sep:
            return False
        return name.strip().decode("latin-1").lower() in cls.DROP_HEADERS

    def request_head(self, uri: ParsedURI) -> bytes:
        """Forwarded request line, ``Host`` and the injected headers."""
        return (
            uri.request_line
            + f"User-Agent: {self.user_agent}\r\n"
            + "Connection: close\r\n"
            + "Proxy-Connection: close\r\n"
        ).encode("latin-1")

    def filter_line(self, line: bytes) -> Optional[bytes]:
        """Return *line* if it should reach the origin, else ``None``."""
        if self.should_drop(line):
            return None
        return line
