"""Forwarding HTTP/1.0 proxy with a shared, byte-bounded LRU response cache."""

from .cache import CacheEntry, CacheManager, CacheStats, ReaderWriterGate
from .config import (
    DEFAULT_CONFIG,
    MAX_CACHE_SIZE,
    MAX_LINE,
    MAX_OBJECT_SIZE,
    USER_AGENT,
    ProxyConfig,
    load_config,
)
from .errors import ConfigError, ProxyError, render_error, send_error
from .handler import ConnectionHandler, ResponseCapture
from .server import ThreadedProxyServer
from .uri import ParsedURI, parse_uri

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheStats",
    "ConfigError",
    "ConnectionHandler",
    "DEFAULT_CONFIG",
    "MAX_CACHE_SIZE",
    "MAX_LINE",
    "MAX_OBJECT_SIZE",
    "ParsedURI",
    "ProxyConfig",
    "ProxyError",
    "ReaderWriterGate",
    "ResponseCapture",
    "ThreadedProxyServer",
    "USER_AGENT",
    "load_config",
    "parse_uri",
    "render_error",
    "send_error",
]
