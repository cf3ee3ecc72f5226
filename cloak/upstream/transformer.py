"""
Turns an upstream ``httpx.Response`` into the response sent to the client.

- 3xx: the Location header is re-addressed through the proxy, body dropped
- text/html: the document is buffered and rewritten
- anything else: raw bytes are streamed through untouched

Privacy headers are applied on every branch.
"""

import logging
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import httpx
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from cloak.codec import proxy_path, resolve
from cloak.errors import MarkupParseFailure
from cloak.rewriter import MarkupRewriter, RewriteContext
from cloak.utils import redact_url
from cloak.utils.exception_logging import log_exception_with_details
from cloak.vars import INJECT_CLIENT_SCRIPT, PROXY_PREFIX
from .fetcher import ORIGINAL_LOCATION

logger = logging.getLogger("uvicorn.error")

# Upstream headers never passed to the client
HIDE_HEADERS = {"set-cookie", "server", "x-powered-by", "referrer-policy"}

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers describing a body we replace
BODY_HEADERS = {"content-length", "content-encoding", "content-type"}

REFERRER_POLICY = "no-referrer"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def is_html(content_type: Optional[str]) -> bool:
    return "text/html" in (content_type or "").lower()


def filter_headers(
    headers: httpx.Headers, drop: Iterable[str] = ()
) -> List[Tuple[str, str]]:
    """Upstream headers minus the privacy deny-list, hop-by-hop headers and ``drop``."""
    excluded = HIDE_HEADERS | HOP_BY_HOP_HEADERS | {name.lower() for name in drop}
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in excluded
    ]


def _apply_headers(response: Response, headers: List[Tuple[str, str]]) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    response.headers["referrer-policy"] = REFERRER_POLICY
    return response


async def _stream_raw(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Yield upstream bytes exactly as received (no decompression)."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await upstream.aclose()


class ResponseTransformer:
    """
    Builds client responses for one proxy deployment.

    Args:
        proxy_prefix: Path under which targets are addressed
        proxy_origin: Public origin of the proxy, used to spot already proxied links
        inject_client_script: Whether rewritten documents get the client guard
    """

    def __init__(
        self,
        proxy_prefix: str = PROXY_PREFIX,
        proxy_origin: Optional[str] = None,
        inject_client_script: bool = INJECT_CLIENT_SCRIPT,
    ):
        self.proxy_prefix = proxy_prefix
        self.proxy_origin = proxy_origin
        self.inject_client_script = inject_client_script

    async def transform(
        self, upstream: httpx.Response, target: str, method: str = "GET"
    ) -> Response:
        """
        Build the client response for ``upstream``, fetched from ``target``.

        Takes ownership of ``upstream`` and closes it once its body is consumed.
        """
        status = upstream.status_code

        if 300 <= status < 400:
            return await self.redirect(upstream, target)

        has_body = method.upper() != "HEAD" and status not in (204, 205)
        if has_body and is_html(upstream.headers.get("content-type")):
            return await self.html(upstream, target)

        return self.passthrough(upstream)

    async def redirect(self, upstream: httpx.Response, target: str) -> Response:
        await upstream.aclose()

        headers = filter_headers(upstream.headers, drop=BODY_HEADERS | {"location"})
        location = upstream.extensions.get(
            ORIGINAL_LOCATION, upstream.headers.get("location")
        )
        if location:
            resolved = resolve(location, target)
            if resolved is not None:
                location = proxy_path(resolved, self.proxy_prefix)
            headers.append(("location", location))
            logger.debug(f"[Transform] Redirect {upstream.status_code} -> {redact_url(resolved)}")

        return _apply_headers(Response(status_code=upstream.status_code), headers)

    async def html(self, upstream: httpx.Response, target: str) -> Response:
        try:
            raw = await upstream.aread()
        finally:
            await upstream.aclose()

        encoding = upstream.charset_encoding or "utf-8"
        try:
            text = raw.decode(encoding, errors="replace")
        except LookupError:
            text = raw.decode("utf-8", errors="replace")

        rewriter = MarkupRewriter(
            RewriteContext(
                base_url=target,
                proxy_prefix=self.proxy_prefix,
                proxy_origin=self.proxy_origin,
                inject_client_script=self.inject_client_script,
            )
        )
        try:
            document = rewriter.rewrite(text)
        except MarkupParseFailure as e:
            # Serve the page unrewritten rather than failing the request
            log_exception_with_details(
                logger, f"[Rewrite] {redact_url(target)}", e, level=logging.WARNING
            )
            headers = filter_headers(upstream.headers, drop={"content-length", "content-encoding"})
            return _apply_headers(Response(content=raw, status_code=upstream.status_code), headers)

        logger.debug(
            f"[Transform] Rewrote {sum(rewriter.rewritten.values())} references in {redact_url(target)}"
        )
        headers = filter_headers(upstream.headers, drop=BODY_HEADERS)
        response = Response(
            content=document.encode("utf-8"),
            status_code=upstream.status_code,
            media_type=HTML_CONTENT_TYPE,
        )
        return _apply_headers(response, headers)

    def passthrough(self, upstream: httpx.Response) -> Response:
        headers = filter_headers(upstream.headers)
        if "content-type" not in upstream.headers:
            headers.append(("content-type", DEFAULT_CONTENT_TYPE))

        response = StreamingResponse(
            _stream_raw(upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        return _apply_headers(response, headers)
