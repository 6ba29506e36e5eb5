"""Thread-per-connection listener (the default server)."""

from __future__ import annotations

import socket
import threading
from typing import Optional

from .cache import CacheManager
from .config import DEFAULT_CONFIG, ProxyConfig
from .handler import ConnectionHandler, format_peer
from .log import get_logger

logger = get_logger(__name__)


class ThreadedProxyServer:
    """Accepts connections and serves each on its own thread.

    There is no worker pool and no admission control: every accepted
    connection gets a fresh daemon thread.  Connections share nothing but
    the :class:`CacheManager`.

    Usage::

        cache = CacheManager(config)
        server = ThreadedProxyServer(cache, port=8080, config=config)
        server.start()
        server.serve_forever()   # or leave the accept thread running
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
        self._handler = ConnectionHandler(cache, config)
        self._sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> int:
        """Bind, listen and start the accept thread.  Returns the bound port."""
        self._sock = socket.create_server((self.host, self.port), backlog=128)
        self.port = self._sock.getsockname()[1]
        self._stopping.clear()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="proxy-accept", daemon=True
        )
        self._accept_thread.start()
        logger.info(
            "Proxy listening on %s:%d (threaded, cache %d bytes)",
            self.host or "*",
            self.port,
            self.cache.max_cache_size,
        )
        return self.port

    def serve_forever(self) -> None:
        """Block until :meth:`stop` is called from another thread."""
        if self._accept_thread is None:
            self.start()
        self._stopping.wait()

    def stop(self) -> None:
        """Stop accepting.  Connections already in flight run to completion."""
        self._stopping.set()
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._sock.close()
            self._sock = None
        if (
            self._accept_thread is not None
            and self._accept_thread is not threading.current_thread()
        ):
            self._accept_thread.join(timeout=5.0)
        self._accept_thread = None
        stats = self.cache.stats()
        logger.info(
            "Proxy stopped (was :%d) - %d hits, %d misses, %d entries, %d bytes",
            self.port,
            stats.hits,
            stats.misses,
            stats.entries,
            stats.total_size,
        )

    # -- internal ----------------------------------------------------------

    def _accept_loop(self) -> None:
        sock = self._sock
        assert sock is not None
        while not self._stopping.is_set():
            try:
                conn, addr = sock.accept()
            except OSError as e:
                if not self._stopping.is_set():
                    logger.error("Accept failed: %s", e)
                    self._stopping.set()
                break
            logger.debug("Connection from %s", format_peer(addr))
            threading.Thread(
                target=self._handler.handle,
                args=(conn, addr),
                name=f"proxy-conn-{format_peer(addr)}",
                daemon=True,
            ).start()
