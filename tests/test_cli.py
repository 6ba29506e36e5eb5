from __future__ import annotations

import logging

import pytest

from caching_proxy.cli import build_parser, main
from caching_proxy.log import TRACE, ColoredFormatter, get_logger, parse_level, setup_logging


def test_single_port_argument():
    args = build_parser().parse_args(["8080"])
    assert args.port == 8080
    assert args.use_asyncio is False
    assert args.connect_timeout is None


@pytest.mark.parametrize("argv", [[], ["8080", "9090"], ["notaport"], ["70000"], ["0"]])
def test_usage_errors_exit_non_zero(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(argv)
    assert exc.value.code != 0
    assert "usage:" in capsys.readouterr().err


def test_optional_flags():
    args = build_parser().parse_args(
        ["8080", "--asyncio", "--connect-timeout", "2.5", "--log-level", "debug"]
    )
    assert args.use_asyncio is True
    assert args.connect_timeout == 2.5
    assert args.log_level == "debug"


def test_invalid_config_returns_failure(tmp_path):
    path = tmp_path / "proxy.ini"
    path.write_text("[proxy]\nmax_object_size = 5000\nmax_cache_size = 10\n")
    assert main(["8080", "--config", str(path), "--log-level", "critical"]) == 1


def test_parse_level_accepts_trace():
    assert parse_level("trace") == TRACE
    assert parse_level("INFO") == logging.INFO
    assert parse_level(10) == logging.DEBUG
    with pytest.raises(ValueError):
        parse_level("chatty")


def test_setup_logging_installs_colored_handler():
    logger = setup_logging("debug")
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)
        assert hasattr(get_logger("caching_proxy.cache"), "trace")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)


def test_colored_formatter_leaves_record_untouched():
    formatter = ColoredFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("caching_proxy", logging.INFO, __file__, 1, "hit %s", ("k",), None)

    first = formatter.format(record)
    second = formatter.format(record)

    assert first == second
    assert record.msg == "hit %s"
    assert record.levelname == "INFO"
    assert first.count("\033[0m") == 2
