"""
aio.py: Opt-in asyncio server running on uvloop.

Same pipeline as :mod:`caching_proxy.handler`, but each connection is a task
on a single event loop instead of a thread.  Selected with ``--asyncio``;
the threaded server stays the default.

The cache is still the thread-safe :class:`~caching_proxy.cache.CacheManager`.
Every cache call runs synchronously on the loop thread with no ``await``
inside the gated section, so the gate never blocks the loop.
"""

from __future__ import annotations

import asyncio
import traceback
from asyncio import StreamReader, StreamWriter
from typing import Optional

from .cache import CacheManager
from .config import DEFAULT_CONFIG, ProxyConfig
from .handler import (
    ResponseCapture,
    bad_gateway,
    bad_request,
    format_peer,
    gateway_timeout,
    not_implemented,
)
from .headers import CRLF, HeaderRewriter, is_end_of_headers, parse_request_line
from .log import get_logger
from .uri import ParsedURI, parse_uri

logger = get_logger(__name__)


async def read_line(reader: StreamReader, limit: int) -> bytes:
    """Read through the next ``\\n``, at most *limit* bytes at a time.

    Returns ``b""`` at EOF.  A line longer than the stream limit comes back
    in pieces, like ``BufferedReader.readline(limit)``.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError:
        return await reader.read(limit)


async def close_writer(writer: StreamWriter) -> None:
    """Close *writer*, aborting if the peer never acknowledges."""
    try:
        writer.close()
        await asyncio.wait_for(writer.wait_closed(), timeout=2.0)
    except TimeoutError:
        writer.transport.abort()
        logger.trace("Connection close timed out, aborted")
    except OSError as e:
        logger.debug("Connection close error: %s", e)


class AsyncConnectionHandler:
    """Serves one request per connection on the event loop."""

    __slots__ = ("cache", "config", "rewriter")

    def __init__(self, cache: CacheManager, config: ProxyConfig = DEFAULT_CONFIG):
        self.cache = cache
        self.config = config
        self.rewriter = HeaderRewriter(config.user_agent)

    async def handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        """Entry point for each new connection (called by ``asyncio.Server``)."""
        peer = format_peer(writer.get_extra_info("peername"))
        try:
            await self._process(reader, writer, peer)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("[%s] Connection closed: %s", peer, e)
        except TimeoutError as e:
            logger.debug("[%s] Timed out: %s", peer, e)
        except OSError as e:
            logger.warning("[%s] I/O error: %s", peer, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[%s] Error: %s\n%s", peer, e, traceback.format_exc())
        finally:
            await close_writer(writer)

    # -- internal ----------------------------------------------------------

    async def _process(
        self, reader: StreamReader, writer: StreamWriter, peer: str
    ) -> None:
        line = await read_line(reader, self.config.max_line)
        if not line:
            return

        request = parse_request_line(line)
        if request is None:
            logger.debug("[%s] Malformed request line: %r", peer, line)
            bad_request(writer.write, line)
            await writer.drain()
            return
        if not request.is_get:
            logger.debug("[%s] Rejecting %s %s", peer, request.method, request.target)
            not_implemented(writer.write, request)
            await writer.drain()
            return
        if not request.target:
            logger.debug("[%s] GET without a target: %r", peer, line)
            bad_request(writer.write, line)
            await writer.drain()
            return

        cached = self.cache.lookup(request.target)
        if cached is not None:
            logger.info("[HIT] %s (%d bytes)", request.target, cached.size)
            writer.write(cached.body)
            await writer.drain()
            return

        uri = parse_uri(request.target)
        logger.debug("[REQ] GET %s via %s", uri.path, uri.address)
        try:
            async with asyncio.timeout(self.config.connect_timeout):
                origin_reader, origin_writer = await asyncio.open_connection(
                    uri.host, uri.port, limit=self.config.max_line
                )
        except TimeoutError as e:
            logger.warning("[%s] Connect to %s timed out: %s", peer, uri.address, e)
            gateway_timeout(writer.write, uri)
            await writer.drain()
            return
        except (OSError, UnicodeError) as e:
            logger.warning("[%s] Cannot reach %s: %s", peer, uri.address, e)
            bad_gateway(writer.write, uri)
            await writer.drain()
            return

        try:
            await self._send_request(origin_writer, reader, uri)
            capture = await self._forward_response(origin_reader, writer)
        finally:
            await close_writer(origin_writer)

        if capture.cacheable:
            self.cache.insert(request.target, capture.body, capture.total)
        logger.info(
            "[MISS] %s (%d bytes%s)",
            request.target,
            capture.total,
            "" if capture.cacheable else ", not cached",
        )

    async def _send_request(
        self, origin: StreamWriter, client: StreamReader, uri: ParsedURI
    ) -> None:
        origin.write(self.rewriter.request_head(uri))
        while True:
            line = await read_line(client, self.config.max_line)
            if not line or is_end_of_headers(line):
                break
            kept = self.rewriter.filter_line(line)
            if kept is not None:
                origin.write(kept)
        origin.write(CRLF)
        await origin.drain()

    async def _forward_response(
        self, origin: StreamReader, client: StreamWriter
    ) -> ResponseCapture:
        capture = ResponseCapture(self.config.max_object_size)
        while True:
            async with asyncio.timeout(self.config.read_timeout):
                line = await read_line(origin, self.config.max_line)
            if not line:
                break
            client.write(line)
            await client.drain()
            capture.feed(line)
            logger.trace("[RESP] %d bytes relayed", capture.total)
        return capture


class AsyncProxyServer:
    """asyncio counterpart of :class:`~caching_proxy.server.ThreadedProxyServer`.

    Usage::

        server = AsyncProxyServer(cache, port=8080, config=config)
        port = await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        cache: CacheManager,
        host: str = "",
        port: int = 0,
        config: ProxyConfig = DEFAULT_CONFIG,
    ):
        self.host = host
        self.port = port
        self.config = config
        self.cache = cache
        self._handler = AsyncConnectionHandler(cache, config)
        self._server: Optional[asyncio.Server] = None

    async def start(self) -> int:
        """Start listening.  Returns the bound port number."""
        self._server = await asyncio.start_server(
            self._handler.handle_client,
            self.host or None,
            self.port,
            limit=self.config.max_line,
            reuse_address=True,
        )
        sock = self._server.sockets[0]
        self.port = sock.getsockname()[1]
        logger.info(
            "Proxy listening on %s:%d (asyncio, cache %d bytes)",
            self.host or "*",
            self.port,
            self.cache.max_cache_size,
        )
        return self.port

    async def stop(self) -> None:
        """Stop accepting new connections."""
        if self._server:
            if self._server.is_serving():
                self._server.close()
                try:
                    await asyncio.wait_for(self._server.wait_closed(), timeout=5.0)
                except TimeoutError:
                    logger.warning("Timed out waiting for connections to finish")
            self._server = None
        stats = self.cache.stats()
        logger.info(
            "Proxy stopped (was :%d) - %d hits, %d misses, %d entries, %d bytes",
            self.port,
            stats.hits,
            stats.misses,
            stats.entries,
            stats.total_size,
        )
