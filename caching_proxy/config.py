"""Tunable limits and runtime settings for the proxy."""

from __future__ import annotations

import configparser
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError

# Recommended max cache and object sizes
MAX_CACHE_SIZE = 1049000
MAX_OBJECT_SIZE = 102400
MAX_LINE = 8192

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:10.0.3) Gecko/20120305 Firefox/10.0.3"
)

CONFIG_SECTION = "proxy"


@dataclass(frozen=True)
class ProxyConfig:
    """Tunable knobs for the proxy.

    Sizes are in bytes, timeouts in seconds.

    Attributes
    ----------
    max_cache_size:
        Upper bound on the summed size of all cached bodies.
    max_object_size:
        Largest response body that is eligible for caching.  Larger
        responses are still forwarded in full.
    max_line:
        Longest single read from either peer.  Longer lines are relayed
        as successive chunks.
    user_agent:
        Value injected as ``User-Agent`` on every forwarded request.
    connect_timeout:
        Origin connect deadline.  ``None`` waits forever.
    read_timeout:
        Deadline for each origin read.  ``None`` waits forever.
    """

    max_cache_size: int = MAX_CACHE_SIZE
    max_object_size: int = MAX_OBJECT_SIZE
    max_line: int = MAX_LINE
    user_agent: str = USER_AGENT

    connect_timeout: Optional[float] = None
    read_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_object_size <= 0 or self.max_cache_size <= 0:
            raise ConfigError("Cache sizes must be positive")
        if self.max_object_size > self.max_cache_size:
            raise ConfigError(
                f"max_object_size ({self.max_object_size}) exceeds "
                f"max_cache_size ({self.max_cache_size})"
            )
        if self.max_line <= 0:
            raise ConfigError("max_line must be positive")
        for name in ("connect_timeout", "read_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigError(f"{name} must be positive or unset")


DEFAULT_CONFIG = ProxyConfig()


def _get_timeout(parser: configparser.ConfigParser, key: str) -> Optional[float]:
    raw = parser.get(CONFIG_SECTION, key, fallback="").strip()
    if not raw or raw.lower() == "none":
        return None
    return float(raw)


def load_config(path: Optional[str] = None, **overrides: object) -> ProxyConfig:
    """Build a :class:`ProxyConfig` from an INI file plus explicit overrides.

    The file is optional; missing keys fall back to the defaults.
    Overrides whose value is ``None`` are ignored so that unset CLI flags
    do not mask values from the file.
    """
    parser = configparser.ConfigParser()
    if path is not None and not parser.read(path, encoding="utf-8"):
        raise ConfigError(f"Cannot read config file: {path}")

    try:
        values: dict[str, object] = {
            "max_cache_size": parser.getint(
                CONFIG_SECTION, "max_cache_size", fallback=MAX_CACHE_SIZE
            ),
            "max_object_size": parser.getint(
                CONFIG_SECTION, "max_object_size", fallback=MAX_OBJECT_SIZE
            ),
            "max_line": parser.getint(CONFIG_SECTION, "max_line", fallback=MAX_LINE),
            "user_agent": parser.get(
                CONFIG_SECTION, "user_agent", fallback=USER_AGENT
            ),
            "connect_timeout": _get_timeout(parser, "connect_timeout"),
            "read_timeout": _get_timeout(parser, "read_timeout"),
        }
    except ValueError as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e

    for key, value in overrides.items():
        if key not in values:
            raise ConfigError(f"Unknown setting: {key}")
        if value is not None:
            values[key] = value

    return ProxyConfig(**values)  # type: ignore[arg-type]
