"""
Outbound requests to the origin.

Contract: redirects are never followed here. Every 3xx is returned to the
caller so the Location can be re-addressed through the proxy instead of
exposing the origin to the client.
"""

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Mapping, Optional, Dict

import httpx

from cloak.errors import UpstreamFetchFailure, UpstreamTimeout
from cloak.utils import redact_url
from cloak.vars import MAX_CONNECTIONS, PROXY_TIMEOUT, USER_AGENT

logger = logging.getLogger("uvicorn.error")

# Response extension holding the raw Location header of a redirect
ORIGINAL_LOCATION = "cloak.original_location"

# Request headers copied from the client; anything else (Referer, Origin,
# User-Agent, Authorization, ...) stays with the client
FORWARD_ALLOW = (
    "accept",
    "accept-language",
    "content-type",
    "range",
    "if-range",
    "if-none-match",
    "cache-control",
    "x-requested-with",
)

BODYLESS_METHODS = {"GET", "HEAD"}


def build_upstream_headers(
    inbound: Mapping[str, str],
    forward_cookies: bool = False,
    user_agent: Optional[str] = USER_AGENT,
) -> Dict[str, str]:
    """Allow-listed subset of the client's headers to send upstream."""
    headers = {}
    for name in FORWARD_ALLOW:
        value = inbound.get(name)
        if value:
            headers[name] = value

    # Opt-in only; applies to every origin the request touches
    if forward_cookies:
        cookie = inbound.get("cookie")
        if cookie:
            headers["cookie"] = cookie

    if user_agent:
        headers["user-agent"] = user_agent
    return headers


class UpstreamFetcher:
    """
    Performs the upstream request with a shared, injected ``httpx.AsyncClient``.

    The client may be used by many requests at once; the fetcher itself keeps
    no state between requests.
    """

    def __init__(self, client: httpx.AsyncClient, user_agent: Optional[str] = USER_AGENT):
        self.client = client
        self.user_agent = user_agent

    async def fetch(
        self,
        method: str,
        target: str,
        inbound_headers: Mapping[str, str],
        body: Optional[bytes] = None,
        forward_cookies: bool = False,
    ) -> httpx.Response:
        """
        Send the request and return the response with its body still unread.

        The caller owns the returned response and must close it.

        Raises:
            UpstreamTimeout: if the origin did not answer in time.
            UpstreamFetchFailure: on any other transport error.
        """
        headers = build_upstream_headers(inbound_headers, forward_cookies, self.user_agent)
        content = body if body and method.upper() not in BODYLESS_METHODS else None

        logger.debug(f"[Upstream] {method} {redact_url(target)}")
        try:
            request = self.client.build_request(
                method=method,
                url=target,
                headers=headers,
                content=content,
            )
            return await self.client.send(request, stream=True, follow_redirects=False)
        except httpx.TimeoutException as e:
            logger.warning(f"[Upstream] Timeout for {redact_url(target)}: {e}")
            raise UpstreamTimeout(f"Upstream timeout: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"[Upstream] Request to {redact_url(target)} failed: {e}")
            raise UpstreamFetchFailure(str(e) or type(e).__name__) from e


async def stash_location(response: httpx.Response) -> None:
    """
    Move the Location header of a redirect into the response extensions.

    httpx parses Location to prepare the next request even when redirects are
    not followed, and fails on values such as ``mailto:`` addresses. With the
    header gone no next request is built, and the transformer reads the raw
    value from :data:`ORIGINAL_LOCATION`.
    """
    if 300 <= response.status_code < 400 and "location" in response.headers:
        response.extensions[ORIGINAL_LOCATION] = response.headers["location"]
        del response.headers["location"]


def create_http_client(
    timeout: float = PROXY_TIMEOUT,
    max_connections: int = MAX_CONNECTIONS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Connection pool shared by all requests of the application.

    Its cookie jar refuses every cookie: upstream cookies must never leak
    from one client's request into another's.
    """
    return httpx.AsyncClient(
        transport=transport,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
        timeout=httpx.Timeout(timeout),
        limits=httpx.Limits(max_connections=max_connections),
        follow_redirects=False,  # Handle redirects manually for rewriting
        event_hooks={"response": [stash_location]},
    )
