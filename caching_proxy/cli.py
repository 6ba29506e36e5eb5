"""Command-line entry point: ``caching-proxy <port>``."""

from __future__ import annotations

import argparse
import asyncio
import signal
import traceback
from typing import Optional, Sequence

import uvloop

from .aio import AsyncProxyServer
from .cache import CacheManager
from .config import ProxyConfig, load_config
from .errors import ConfigError
from .log import get_logger, setup_logging
from .server import ThreadedProxyServer

logger = get_logger(__name__)


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}")
    if seconds <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="caching-proxy",
        description="Forwarding HTTP/1.0 proxy with a shared in-memory cache",
    )
    parser.add_argument('port', type=_port, help='TCP port to listen on')
    parser.add_argument('-c', '--config', type=str, metavar='PATH', default=None, help='Path to an INI file with a [proxy] section')
    parser.add_argument('--host', dest='host', type=str, metavar='HOST', default='', help='Host/IP to bind (default: all interfaces)')
    parser.add_argument('--asyncio', dest='use_asyncio', action='store_true', help='Serve connections as asyncio tasks on uvloop instead of threads')
    parser.add_argument('--connect-timeout', dest='connect_timeout', type=_seconds, metavar='SECONDS', default=None, help='Origin connect timeout (default: wait forever)')
    parser.add_argument('--read-timeout', dest='read_timeout', type=_seconds, metavar='SECONDS', default=None, help='Origin read timeout (default: wait forever)')
    parser.add_argument('--log-level', dest='log_level', type=str, metavar='LEVEL', default='INFO', help='TRACE, DEBUG, INFO, WARNING or ERROR (default: INFO)')
    return parser


def run_threaded(cache: CacheManager, host: str, port: int, config: ProxyConfig) -> None:
    server = ThreadedProxyServer(cache, host=host, port=port, config=config)

    def terminated(signum: int, frame: object) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        server.stop()

    signal.signal(signal.SIGTERM, terminated)
    signal.signal(signal.SIGINT, terminated)
    server.start()
    server.serve_forever()


async def run_async(cache: CacheManager, host: str, port: int, config: ProxyConfig) -> None:
    server = AsyncProxyServer(cache, host=host, port=port, config=config)
    stopping = asyncio.Event()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, stopping.set)
    loop.add_signal_handler(signal.SIGINT, stopping.set)

    await server.start()
    await stopping.wait()
    logger.info("Shutting down")
    await server.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        setup_logging(args.log_level)
    except ValueError as e:
        build_parser().error(str(e))

    try:
        config = load_config(
            args.config,
            connect_timeout=args.connect_timeout,
            read_timeout=args.read_timeout,
        )
    except ConfigError as e:
        logger.critical("Invalid configuration: %s", e)
        return 1

    cache = CacheManager(config)
    try:
        if args.use_asyncio:
            uvloop.run(run_async(cache, args.host, args.port, config))
        else:
            run_threaded(cache, args.host, args.port, config)
    except OSError as e:
        logger.critical("Cannot listen on port %d: %s", args.port, e)
        return 1
    except Exception:
        logger.critical("Proxy failed: %s", traceback.format_exc())
        return 1
    return 0
