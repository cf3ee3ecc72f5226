import logging
from typing import Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from opentelemetry import trace
from starlette.datastructures import QueryParams

from cloak.codec import decode_target, validate_scheme
from cloak.errors import (
    InvalidTarget,
    MissingTarget,
    UnsupportedScheme,
    UpstreamFetchFailure,
    UpstreamTimeout,
)
from cloak.upstream import ResponseTransformer, UpstreamFetcher
from cloak.utils import redact_url
from cloak.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from cloak.utils.traced_requests import traced_request
from cloak.vars import INJECT_CLIENT_SCRIPT, PROXY_BASE_PATH, PROXY_PREFIX, PUBLIC_URL

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Query parameters that belong to the proxy rather than to the target
PROXY_QUERY_PARAMS = {"u", "url", "forwardCookies"}


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared upstream client created in the application lifespan."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Upstream client is not configured.")
    return client


def get_transformer(request: Request) -> ResponseTransformer:
    if PUBLIC_URL:
        origin = PUBLIC_URL
    else:
        origin = f"{request.url.scheme}://{request.headers.get('host', request.url.netloc)}"
    return ResponseTransformer(
        proxy_prefix=PROXY_PREFIX,
        proxy_origin=origin,
        inject_client_script=INJECT_CLIENT_SCRIPT,
    )


def apply_form_query(target: str, query_params: QueryParams) -> str:
    """
    Replace the target's query with the request's own parameters, if any.

    A GET form whose action is a proxy address is submitted as
    ``<prefix>/<token>?field=value``; the browser would have sent those
    fields as the query of the original action.
    """
    extra = [(k, v) for k, v in query_params.multi_items() if k not in PROXY_QUERY_PARAMS]
    if not extra:
        return target
    parts = urlsplit(target)
    return urlunsplit(parts._replace(query=urlencode(extra)))


def get_target(request: Request, token: Optional[str] = None) -> str:
    """
    Target URL addressed by the request.

    Raises:
        MissingTarget: if neither a token nor a plain ``url`` parameter is given.
        InvalidTarget: if the target cannot be decoded or is not http/https.
    """
    if token is None:
        token = request.query_params.get("u")

    if token:
        target = decode_target(token)
    else:
        # Plain, unencoded target (?url=https://...)
        target = request.query_params.get("url")
        if not target:
            raise MissingTarget()
        if not validate_scheme(target):
            raise UnsupportedScheme("Invalid target URL.")
        if not urlsplit(target).netloc:
            raise InvalidTarget("Invalid target URL.")

    return apply_form_query(target, request.query_params)


async def forward_to_target(
    request: Request,
    token: Optional[str],
    client: httpx.AsyncClient,
    transformer: ResponseTransformer,
) -> Response:
    """
    Proxy one request:
    - Decode and validate the target
    - Fetch it with the allow-listed headers, without following redirects
    - Rewrite redirects and HTML, stream everything else
    """
    try:
        target = get_target(request, token)
    except (MissingTarget, InvalidTarget) as e:
        logger.info(f"[Proxy] Rejected {request.method} {request.url.path}: {e}")
        return PlainTextResponse(str(e), status_code=e.status_code)

    forward_cookies = request.query_params.get("forwardCookies") == "1"

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target=target,
        extra_attrs={"proxy.forward_cookies": forward_cookies},
    ) as span:
        try:
            body = await request.body()
            upstream = await UpstreamFetcher(client).fetch(
                request.method,
                target,
                request.headers,
                body=body,
                forward_cookies=forward_cookies,
            )
            span.set_attribute("proxy.status_code", upstream.status_code)

            try:
                return await transformer.transform(upstream, target, request.method)
            except Exception:
                await upstream.aclose()
                raise

        except UpstreamFetchFailure as e:
            span.set_attribute(
                "proxy.error",
                "timeout" if isinstance(e, UpstreamTimeout) else "fetch_failed",
            )
            log_exception_with_details(logger, f"[Proxy] {redact_url(target)}", e)
            return PlainTextResponse(
                f"Proxy error: {format_exception_message(e)}", status_code=500
            )

        except Exception as e:
            span.set_attribute("proxy.error", type(e).__name__)
            log_exception_with_details(logger, f"[Proxy] {redact_url(target)}", e)
            return PlainTextResponse(
                f"Proxy error: {format_exception_message(e)}", status_code=500
            )


@router.api_route(PROXY_PREFIX, methods=PROXY_METHODS)
@router.api_route(PROXY_PREFIX + "/", methods=PROXY_METHODS)
async def proxy_missing_token(request: Request):
    """A proxy path without a token."""
    error = MissingTarget()
    logger.info(f"[Proxy] Rejected {request.method} {request.url.path}: {error}")
    return PlainTextResponse(str(error), status_code=error.status_code)


@router.api_route(PROXY_PREFIX + "/{token}", methods=PROXY_METHODS)
async def proxy_path_target(
    request: Request,
    token: str,
    client: httpx.AsyncClient = Depends(get_http_client),
    transformer: ResponseTransformer = Depends(get_transformer),
):
    """Proxy the target encoded in the path (``/p/<token>``)."""
    return await forward_to_target(request, token, client, transformer)


@router.api_route(PROXY_BASE_PATH + "/proxy", methods=PROXY_METHODS)
@router.api_route(PROXY_BASE_PATH + "/api/proxy", methods=PROXY_METHODS)
async def proxy_query_target(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    transformer: ResponseTransformer = Depends(get_transformer),
):
    """Proxy the target given as ``?u=<token>`` (or plain ``?url=<url>``)."""
    return await forward_to_target(request, None, client, transformer)
