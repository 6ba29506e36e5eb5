from __future__ import annotations

import pytest

from caching_proxy.uri import ParsedURI, parse_uri


@pytest.mark.parametrize(
    ("uri", "host", "port", "path"),
    [
        ("http://example.com/index.html", "example.com", "80", "/index.html"),
        ("http://example.com:8080/a/b?q=1", "example.com", "8080", "/a/b?q=1"),
        ("http://example.com", "example.com", "80", "/"),
        ("http://example.com:8080", "example.com", "8080", "/"),
        ("//cdn.example.com/x.js", "cdn.example.com", "80", "/x.js"),
        ("example.com/plain", "example.com", "80", "/plain"),
    ],
)
def test_parse_uri_components(uri, host, port, path):
    parsed = parse_uri(uri)
    assert (parsed.host, parsed.port, parsed.path) == (host, port, path)


def test_request_line_is_http10_with_host():
    parsed = parse_uri("http://example.com:8080/a")
    assert parsed.request_line == "GET /a HTTP/1.0\r\nHost: example.com\r\n"
    assert parsed.address == "example.com:8080"


def test_malformed_port_is_not_corrected():
    parsed = parse_uri("http://example.com:notaport/x")
    assert parsed == ParsedURI(
        "example.com",
        "notaport",
        "/x",
        "GET /x HTTP/1.0\r\nHost: example.com\r\n",
    )


def test_relative_target_yields_empty_host():
    parsed = parse_uri("/index.html")
    assert parsed.host == ""
    assert parsed.path == "/index.html"
