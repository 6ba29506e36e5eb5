from __future__ import annotations

import socket
import threading
from typing import Iterator, Optional

import pytest

from caching_proxy import CacheManager, ProxyConfig, ThreadedProxyServer


class OriginServer:
    """Minimal HTTP/1.0 origin: records each request, replies, closes."""

    def __init__(self) -> None:
        self.parts: list[bytes] = [
            b"HTTP/1.0 200 OK\r\n",
            b"Content-Type: text/plain\r\n",
            b"\r\n",
            b"hello from origin\n",
        ]
        self.hold: Optional[threading.Event] = None
        self.requests: list[bytes] = []
        self.connections = 0
        self.port = 0
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()

    def respond(self, *parts: bytes, hold: Optional[threading.Event] = None) -> None:
        """Set the reply.  With *hold*, the first part is sent alone and the
        rest only once *hold* is set."""
        self.parts = list(parts)
        self.hold = hold

    @property
    def body(self) -> bytes:
        return b"".join(self.parts)

    def start(self) -> int:
        self._sock = socket.create_server(("127.0.0.1", 0))
        self.port = self._sock.getsockname()[1]
        threading.Thread(target=self._accept_loop, daemon=True).start()
        return self.port

    def stop(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def url(self, path: str = "/page") -> str:
        return f"http://127.0.0.1:{self.port}{path}"

    def _accept_loop(self) -> None:
        sock = self._sock
        while True:
            try:
                conn, _ = sock.accept()
            except OSError:
                return
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        with conn:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                data += chunk
            with self._lock:
                self.requests.append(data)
            try:
                if self.hold is not None and self.parts:
                    conn.sendall(self.parts[0])
                    self.hold.wait(timeout=5.0)
                    conn.sendall(b"".join(self.parts[1:]))
                else:
                    conn.sendall(self.body)
            except OSError:
                pass


NON_GET_LINES = [
    b"DELETE\r\n",
    b"GARBAGE\r\n",
    b"POST /index.html\r\n",
    b"POST /index.html HTTP/1.0\r\n",
    b"POST /a b HTTP/1.0\r\n",
]


def fetch(port: int, request: bytes, timeout: float = 5.0) -> bytes:
    with socket.create_connection(("127.0.0.1", port), timeout=timeout) as s:
        s.sendall(request)
        chunks = []
        while True:
            data = s.recv(65536)
            if not data:
                break
            chunks.append(data)
    return b"".join(chunks)


def get_request(url: str, *headers: str) -> bytes:
    lines = [f"GET {url} HTTP/1.0", *headers, "", ""]
    return "\r\n".join(lines).encode()


def unused_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def origin() -> Iterator[OriginServer]:
    server = OriginServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def small_config() -> ProxyConfig:
    return ProxyConfig(max_cache_size=300, max_object_size=100)


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager()


@pytest.fixture
def proxy(cache: CacheManager) -> Iterator[ThreadedProxyServer]:
    server = ThreadedProxyServer(cache, host="127.0.0.1", port=0)
    server.start()
    yield server
    server.stop()
