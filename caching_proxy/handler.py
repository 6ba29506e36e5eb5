"""
handler.py: Per-connection request pipeline (blocking sockets).

One :class:`ConnectionHandler` is shared by all connection threads; it
holds no per-connection state.  Each call to :meth:`ConnectionHandler.handle`
serves exactly one request:

1. Read the request line.  Anything but ``GET`` gets a 501 page.
2. Look the raw request-target up in the cache; on a hit write the stored
   bytes and stop.
3. On a miss, connect to the origin, send the rewritten request, then relay
   the response line by line while capturing up to ``max_object_size``
   bytes.
4. If the whole response fit, hand the capture to the cache.
"""

from __future__ import annotations

import socket
import traceback
from dataclasses import dataclass, field
from typing import BinaryIO

from .cache import CacheManager
from .config import DEFAULT_CONFIG, ProxyConfig
from .errors import send_error
from .headers import CRLF, HeaderRewriter, RequestLine, is_end_of_headers, parse_request_line
from .log import get_logger
from .uri import ParsedURI, parse_uri

logger = get_logger(__name__)


@dataclass
class ResponseCapture:
    """Bounded copy of a relayed response.

    Chunks are kept only while the running total stays within *limit*.
    Once a chunk overflows it, nothing more is kept and the response is no
    longer cacheable, but :attr:`total` keeps counting.
    """

    limit: int
    body: bytearray = field(default_factory=bytearray)
    total: int = 0

    def feed(self, chunk: bytes) -> None:
        if self.total + len(chunk) <= self.limit:
            self.body.extend(chunk)
        self.total += len(chunk)

    @property
    def cacheable(self) -> bool:
        return self.total <= self.limit


def format_peer(addr: object) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        return f"{addr[0]}:{addr[1]}"
    return str(addr) if addr else "?"


def bad_request(write, line: bytes) -> None:
    send_error(
        write,
        line.decode("latin-1").strip(),
        400,
        "Bad Request",
        "Proxy could not parse the request line",
    )


def not_implemented(write, request: RequestLine) -> None:
    send_error(
        write,
        request.method,
        501,
        "Not Implemented",
        "This proxy only supports GET requests",
    )


def bad_gateway(write, uri: ParsedURI) -> None:
    send_error(
        write,
        uri.address,
        502,
        "Bad Gateway",
        "Proxy could not connect to the origin server",
    )


def gateway_timeout(write, uri: ParsedURI) -> None:
    send_error(
        write,
        uri.address,
        504,
        "Gateway Timeout",
        "Origin server did not accept the connection in time",
    )


class ConnectionHandler:
    """Serves one request per accepted connection using blocking I/O."""

    __slots__ = ("cache", "config", "rewriter")

    def __init__(self, cache: CacheManager, config: ProxyConfig = DEFAULT_CONFIG):
        self.cache = cache
        self.config = config
        self.rewriter = HeaderRewriter(config.user_agent)

    def handle(self, conn: socket.socket, addr: object = None) -> None:
        """Serve a single request on *conn* and close it.

        Failures abort this request only and are logged; nothing is
        re-raised into the calling thread.
        """
        peer = format_peer(addr)
        try:
            with conn, conn.makefile("rb") as rfile:
                self._process(conn, rfile, peer)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("[%s] Connection closed: %s", peer, e)
        except TimeoutError as e:
            logger.debug("[%s] Timed out: %s", peer, e)
        except OSError as e:
            logger.warning("[%s] I/O error: %s", peer, e)
        except Exception as e:
            logger.error("[%s] Error: %s\n%s", peer, e, traceback.format_exc())

    # -- internal ----------------------------------------------------------

    def _process(self, conn: socket.socket, rfile: BinaryIO, peer: str) -> None:
        line = rfile.readline(self.config.max_line)
        if not line:
            return

        request = parse_request_line(line)
        if request is None:
            logger.debug("[%s] Malformed request line: %r", peer, line)
            bad_request(conn.sendall, line)
            return
        if not request.is_get:
            logger.debug("[%s] Rejecting %s %s", peer, request.method, request.target)
            not_implemented(conn.sendall, request)
            return
        if not request.target:
            logger.debug("[%s] GET without a target: %r", peer, line)
            bad_request(conn.sendall, line)
            return

        cached = self.cache.lookup(request.target)
        if cached is not None:
            logger.info("[HIT] %s (%d bytes)", request.target, cached.size)
            conn.sendall(cached.body)
            return

        uri = parse_uri(request.target)
        logger.debug("[REQ] GET %s via %s", uri.path, uri.address)
        try:
            origin = socket.create_connection(
                (uri.host, uri.port), timeout=self.config.connect_timeout
            )
        except TimeoutError as e:
            logger.warning("[%s] Connect to %s timed out: %s", peer, uri.address, e)
            gateway_timeout(conn.sendall, uri)
            return
        except (OSError, UnicodeError) as e:
            logger.warning("[%s] Cannot reach %s: %s", peer, uri.address, e)
            bad_gateway(conn.sendall, uri)
            return

        with origin:
            origin.settimeout(self.config.read_timeout)
            self._send_request(origin, rfile, uri)
            capture = self._forward_response(origin, conn)

        if capture.cacheable:
            self.cache.insert(request.target, capture.body, capture.total)
        logger.info(
            "[MISS] %s (%d bytes%s)",
            request.target,
            capture.total,
            "" if capture.cacheable else ", not cached",
        )

    def _send_request(
        self, origin: socket.socket, rfile: BinaryIO, uri: ParsedURI
    ) -> None:
        """Write the rewritten request line and header block."""
        origin.sendall(self.rewriter.request_head(uri))
        while True:
            line = rfile.readline(self.config.max_line)
            if not line or is_end_of_headers(line):
                break
            kept = self.rewriter.filter_line(line)
            if kept is not None:
                origin.sendall(kept)
        origin.sendall(CRLF)

    def _forward_response(
        self, origin: socket.socket, client: socket.socket
    ) -> ResponseCapture:
        """Relay the origin's response until EOF, one line at a time."""
        capture = ResponseCapture(self.config.max_object_size)
        with origin.makefile("rb") as ofile:
            while True:
                line = ofile.readline(self.config.max_line)
                if not line:
                    break
                client.sendall(line)
                capture.feed(line)
                logger.trace("[RESP] %d bytes relayed", capture.total)
        return capture
