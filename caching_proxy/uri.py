"""Request-target decomposition for forwarded requests."""

from __future__ import annotations

from typing import NamedTuple

DEFAULT_PORT = "80"


class ParsedURI(NamedTuple):
    host: str
    port: str
    path: str
    request_line: str

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def parse_uri(uri: str) -> ParsedURI:
    """Split an absolute (``http://h:p/x``) or scheme-relative target.

    Everything up to and including the first ``//`` is skipped.  The
    host runs to the first ``/``, ``:`` or end of string.  No validation
    is performed on the host or port, so malformed input produces
    malformed output (an unreachable origin, in practice).

    >>> parse_uri("http://example.com:8080/a/b")
    ParsedURI(host='example.com', port='8080', path='/a/b', request_line='GET /a/b HTTP/1.0\\r\\nHost: example.com\\r\\n')
    """
    marker = uri.find("//")
    rest = uri[marker + 2:] if marker != -1 else uri

    end = 0
    while end < len(rest) and rest[end] not in "/:":
        end += 1
    host = rest[:end]
    port = DEFAULT_PORT

    if rest[end:end + 1] == ":":
        slash = rest.find("/", end + 1)
        if slash != -1:
            port = rest[end + 1:slash]
            path = rest[slash:]
        else:
            port = rest[end + 1:]
            path = "/"
    else:
        path = rest[end:] or "/"

    request_line = f"GET {path} HTTP/1.0\r\nHost: {host}\r\n"
    return ParsedURI(host, port, path, request_line)
