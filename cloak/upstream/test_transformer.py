import gzip
from unittest.mock import patch

import httpx
import pytest

from cloak.codec import encode_url
from cloak.errors import MarkupParseFailure
from cloak.rewriter import MarkupRewriter
from cloak.upstream.transformer import (
    DEFAULT_CONTENT_TYPE,
    HTML_CONTENT_TYPE,
    ResponseTransformer,
    filter_headers,
    is_html,
)

TARGET = "https://example.com/dir/page"


def _transformer():
    return ResponseTransformer(
        proxy_prefix="/p", proxy_origin="https://proxy.test", inject_client_script=False
    )


async def _transform(upstream_client, response, method="GET", target=TARGET):
    client = upstream_client(lambda request: response)
    upstream = await client.send(client.build_request(method, target), stream=True)
    return upstream, await _transformer().transform(upstream, target, method)


async def _body(response):
    return b"".join([chunk async for chunk in response.body_iterator])


def test_is_html():
    assert is_html("text/html; charset=utf-8")
    assert is_html("TEXT/HTML")
    assert not is_html("application/json")
    assert not is_html(None)


def test_filter_headers_drops_privacy_and_hop_by_hop():
    headers = httpx.Headers(
        [
            ("Set-Cookie", "a=1"),
            ("Server", "nginx"),
            ("X-Powered-By", "PHP"),
            ("Referrer-Policy", "unsafe-url"),
            ("Connection", "keep-alive"),
            ("Transfer-Encoding", "chunked"),
            ("Cache-Control", "max-age=60"),
        ]
    )
    assert filter_headers(headers) == [("cache-control", "max-age=60")]


def test_filter_headers_extra_drop():
    headers = httpx.Headers({"content-length": "10", "etag": '"x"'})
    assert filter_headers(headers, drop={"Content-Length"}) == [("etag", '"x"')]


class TestRedirects:
    @pytest.mark.asyncio
    async def test_relative_location_is_proxied(self, upstream_client):
        upstream, response = await _transform(
            upstream_client,
            httpx.Response(302, headers={"location": "/login", "server": "nginx"}),
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/p/" + encode_url(
            "https://example.com/login"
        )
        assert response.body == b""
        assert "server" not in response.headers
        assert response.headers["referrer-policy"] == "no-referrer"
        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_absolute_location(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(301, headers={"location": "https://other.org/x?y=1"}),
        )
        assert response.status_code == 301
        assert response.headers["location"] == "/p/" + encode_url(
            "https://other.org/x?y=1"
        )

    @pytest.mark.asyncio
    async def test_non_http_location_forwarded_unchanged(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(302, headers={"location": "mailto:a@b.c"}),
        )
        assert response.headers["location"] == "mailto:a@b.c"

    @pytest.mark.asyncio
    async def test_location_header_used_without_stash(self):
        upstream = httpx.Response(
            307, headers={"location": "next"}, request=httpx.Request("GET", TARGET)
        )

        response = await _transformer().transform(upstream, TARGET)

        assert response.status_code == 307
        assert response.headers["location"] == "/p/" + encode_url(
            "https://example.com/dir/next"
        )

    @pytest.mark.asyncio
    async def test_not_modified_without_location(self, upstream_client):
        _, response = await _transform(
            upstream_client, httpx.Response(304, headers={"etag": '"v1"'})
        )
        assert response.status_code == 304
        assert "location" not in response.headers
        assert response.headers["etag"] == '"v1"'
        assert response.body == b""


class TestHtml:
    @pytest.mark.asyncio
    async def test_document_is_rewritten(self, upstream_client):
        upstream, response = await _transform(
            upstream_client,
            httpx.Response(
                200,
                headers={"content-type": "text/html", "set-cookie": "sid=1"},
                content=b'<a href="/next">next</a>',
            ),
        )

        expected = "/p/" + encode_url("https://example.com/next")
        assert response.status_code == 200
        assert response.headers["content-type"] == HTML_CONTENT_TYPE
        assert f'href="{expected}"'.encode() in response.body
        assert "set-cookie" not in response.headers
        assert response.headers["referrer-policy"] == "no-referrer"
        assert response.headers["content-length"] == str(len(response.body))
        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_upstream_charset_is_decoded(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(
                200,
                headers={"content-type": "text/html; charset=iso-8859-1"},
                content="<p>café</p>".encode("iso-8859-1"),
            ),
        )
        assert "café".encode("utf-8") in response.body
        assert response.headers["content-type"] == HTML_CONTENT_TYPE

    @pytest.mark.asyncio
    async def test_invalid_bytes_are_replaced(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(
                200, headers={"content-type": "text/html"}, content=b"<p>\xff</p>"
            ),
        )
        assert "\ufffd".encode("utf-8") in response.body

    @pytest.mark.asyncio
    async def test_parse_failure_serves_original_bytes(self, upstream_client):
        raw = b"<p>original</p>"
        with patch.object(
            MarkupRewriter, "rewrite", side_effect=MarkupParseFailure("broken")
        ):
            _, response = await _transform(
                upstream_client,
                httpx.Response(
                    200,
                    headers={"content-type": "text/html; charset=latin-1"},
                    content=raw,
                ),
            )

        assert response.status_code == 200
        assert response.body == raw
        assert response.headers["content-type"] == "text/html; charset=latin-1"
        assert response.headers["referrer-policy"] == "no-referrer"

    @pytest.mark.asyncio
    async def test_head_request_is_not_rewritten(self, upstream_client):
        upstream, response = await _transform(
            upstream_client,
            httpx.Response(200, headers={"content-type": "text/html"}),
            method="HEAD",
        )
        assert response.headers["content-type"] == "text/html"
        assert await _body(response) == b""
        assert upstream.is_closed


class TestPassthrough:
    @pytest.mark.asyncio
    async def test_json_streamed_unchanged(self, upstream_client):
        payload = b'{"url": "https://example.com/"}'
        upstream, response = await _transform(
            upstream_client,
            httpx.Response(
                200,
                headers={"content-type": "application/json", "x-powered-by": "Express"},
                content=payload,
            ),
        )

        assert await _body(response) == payload
        assert response.headers["content-type"] == "application/json"
        assert "x-powered-by" not in response.headers
        assert response.headers["referrer-policy"] == "no-referrer"
        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_missing_content_type_defaults(self, upstream_client):
        _, response = await _transform(
            upstream_client, httpx.Response(200, content=b"\x00\x01")
        )
        assert response.headers["content-type"] == DEFAULT_CONTENT_TYPE
        assert await _body(response) == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_partial_content_headers_kept(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(
                206,
                headers={
                    "content-type": "video/mp4",
                    "content-range": "bytes 0-3/100",
                    "accept-ranges": "bytes",
                },
                content=b"abcd",
            ),
        )
        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 0-3/100"
        assert response.headers["accept-ranges"] == "bytes"
        assert await _body(response) == b"abcd"

    @pytest.mark.asyncio
    async def test_repeated_headers_preserved(self, upstream_client):
        _, response = await _transform(
            upstream_client,
            httpx.Response(
                200,
                headers=[
                    ("content-type", "text/plain"),
                    ("link", "</a.css>; rel=preload"),
                    ("link", "</b.js>; rel=preload"),
                ],
                content=b"ok",
            ),
        )
        assert response.headers.getlist("link") == [
            "</a.css>; rel=preload",
            "</b.js>; rel=preload",
        ]

    @pytest.mark.asyncio
    async def test_compressed_bytes_not_decoded(self, upstream_client):
        compressed = gzip.compress(b"hello world")
        _, response = await _transform(
            upstream_client,
            httpx.Response(
                200,
                headers={"content-type": "text/plain", "content-encoding": "gzip"},
                content=compressed,
            ),
        )
        assert response.headers["content-encoding"] == "gzip"
        assert await _body(response) == compressed
