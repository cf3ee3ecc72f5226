# Ensure tests import the `cloak` package from this checkout first.
import os
import sys

import httpx
import pytest
from fastapi import FastAPI

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)


@pytest.fixture
def upstream_client():
    """
    Build an ``httpx.AsyncClient`` whose requests are answered by ``handler``.

    The handler receives the ``httpx.Request`` and returns an ``httpx.Response``.
    Bodies given with ``content=`` are served as an unread stream, as a network
    transport would, so ``aiter_raw`` works on them.
    Every request seen is recorded in ``client.seen_requests``.
    """

    from cloak.upstream import create_http_client

    def _create(handler):
        seen = []

        def _record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            response = handler(request)
            if isinstance(response.stream, httpx.ByteStream):
                response = httpx.Response(
                    response.status_code,
                    headers=response.headers,
                    stream=httpx.ByteStream(b"".join(response.stream)),
                )
            return response

        client = create_http_client(transport=httpx.MockTransport(_record))
        client.seen_requests = seen
        return client

    return _create


@pytest.fixture
def proxy_app():
    """A FastAPI app serving only the proxy routes, without the lifespan client."""
    from cloak.routes import router

    test_app = FastAPI()
    test_app.include_router(router)
    return test_app
