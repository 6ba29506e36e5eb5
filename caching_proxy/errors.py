"""Error pages sent to clients, and the package's exception types."""

from __future__ import annotations

import html
from typing import Callable


class ProxyError(Exception):
    """Base class for errors raised by the proxy."""


class ConfigError(ProxyError):
    """Raised when the configuration is inconsistent or unreadable."""


def render_error(cause: str, status: int, short_msg: str, long_msg: str) -> bytes:
    """Format a minimal HTTP/1.0 HTML error response.

    >>> render_error("POST", 501, "Not Implemented", "Only GET").split(b"\\r\\n")[0]
    b'HTTP/1.0 501 Not Implemented'
    """
    body = (
        "<html><title>Proxy Error</title>"
        '<body bgcolor="ffffff">\r\n'
        f"{status}: {html.escape(short_msg)}\r\n"
        f"<p>{html.escape(long_msg)}: {html.escape(cause)}\r\n"
        "<hr><em>Caching Proxy</em>\r\n"
    )
    head = f"HTTP/1.0 {status} {short_msg}\r\nContent-type: text/html\r\n\r\n"
    return (head + body).encode("utf-8")


def send_error(
    write: Callable[[bytes], object],
    cause: str,
    status: int,
    short_msg: str,
    long_msg: str,
) -> None:
    """Render an error page and hand it to *write* in one call.

    *write* is ``socket.sendall`` for threaded connections or
    ``StreamWriter.write`` for asyncio ones (the caller drains).
    """
    write(render_error(cause, status, short_msg, long_msg))
