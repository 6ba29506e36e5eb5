"""
Logging setup shared by every module in the package.

Adds a ``TRACE`` level (5) below ``DEBUG`` for per-line I/O chatter and a
colour formatter for terminal output.  Modules obtain their logger via
:func:`get_logger`; handlers are only attached by :func:`setup_logging`,
which the CLI calls once at startup.
"""

from __future__ import annotations

import logging
from typing import Any, Union

TRACE = 5


class CustomLogger(logging.Logger):
    def trace(self, message: object, *args: Any, stacklevel: int = 1, **kwargs: Any) -> None:
        if self.isEnabledFor(TRACE):
            self._log(TRACE, message, args, **kwargs, stacklevel=stacklevel + 1)


logging.setLoggerClass(CustomLogger)
logging.addLevelName(TRACE, "TRACE")


COLORS = {
    TRACE: "\033[0;37m",
    logging.DEBUG: "\033[0m",
    logging.INFO: "\033[34m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[1;31m",
    logging.CRITICAL: "\033[1;37;41m",
}
RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    """Colours the level name and message of a copy of each record.

    The original record is left untouched for any other handler.
    """

    def format(self, record: logging.LogRecord) -> str:
        record = logging.makeLogRecord(record.__dict__)
        c = COLORS.get(record.levelno, RESET)
        record.elapsed = f"{record.relativeCreated / 1000.0:8.3f}"  # type: ignore[attr-defined]
        record.msg = f"{c}{record.msg}{RESET}"
        record.levelname = f"{c}{record.levelname:<8}{RESET}"
        return super().format(record)


LOG_FORMAT = "%(elapsed)s | %(levelname)-8s | %(filename)s | %(funcName)s[%(lineno)d] | %(message)s"


def get_logger(name: str) -> CustomLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def parse_level(level: Union[str, int]) -> int:
    """Accept ``"trace"``, ``"DEBUG"``, ``10`` ... and return a numeric level."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(level: Union[str, int] = logging.INFO) -> CustomLogger:
    """Attach a coloured stream handler to the package logger."""
    root = get_logger("caching_proxy")
    numeric = parse_level(level)
    root.setLevel(numeric)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setLevel(numeric)
    handler.setFormatter(ColoredFormatter(LOG_FORMAT))
    root.addHandler(handler)
    return root
