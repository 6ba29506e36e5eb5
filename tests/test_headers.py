from __future__ import annotations

import pytest

from caching_proxy.config import USER_AGENT
from caching_proxy.headers import (
    HeaderRewriter,
    RequestLine,
    is_end_of_headers,
    parse_request_line,
)
from caching_proxy.uri import parse_uri


def test_parse_request_line():
    assert parse_request_line(b"GET http://h/a HTTP/1.0\r\n") == RequestLine(
        "GET", "http://h/a", "HTTP/1.0"
    )


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        (b"DELETE\r\n", RequestLine("DELETE", "", "")),
        (b"POST /index.html\r\n", RequestLine("POST", "/index.html", "")),
        (b"POST /a b HTTP/1.0\r\n", RequestLine("POST", "/a", "b")),
        (b"GET\r\n", RequestLine("GET", "", "")),
    ],
)
def test_parse_request_line_tolerates_field_count(line, expected):
    assert parse_request_line(line) == expected


def test_parse_request_line_blank_is_none():
    assert parse_request_line(b"\r\n") is None
    assert parse_request_line(b"   \r\n") is None


def test_method_check_is_case_insensitive():
    assert RequestLine("get", "/", "HTTP/1.0").is_get
    assert not RequestLine("POST", "/", "HTTP/1.0").is_get


@pytest.mark.parametrize(
    "line",
    [
        b"Host: example.com\r\n",
        b"User-Agent: curl/8.0\r\n",
        b"Connection: keep-alive\r\n",
        b"Proxy-Connection: keep-alive\r\n",
        b"host: example.com\r\n",
    ],
)
def test_replaced_headers_are_dropped(line):
    assert HeaderRewriter.should_drop(line)
    assert HeaderRewriter(USER_AGENT).filter_line(line) is None


@pytest.mark.parametrize(
    "line",
    [b"Accept: */*\r\n", b"Hostname: x\r\n", b"X-Connection-Id: 1\r\n", b"garbage\r\n"],
)
def test_other_headers_pass_through_verbatim(line):
    assert HeaderRewriter(USER_AGENT).filter_line(line) == line


def test_request_head_injects_fixed_headers():
    head = HeaderRewriter("TestAgent/1.0").request_head(parse_uri("http://h:81/x"))
    assert head == (
        b"GET /x HTTP/1.0\r\n"
        b"Host: h\r\n"
        b"User-Agent: TestAgent/1.0\r\n"
        b"Connection: close\r\n"
        b"Proxy-Connection: close\r\n"
    )


def test_end_of_headers():
    assert is_end_of_headers(b"\r\n")
    assert is_end_of_headers(b"\n")
    assert not is_end_of_headers(b"Accept: */*\r\n")
