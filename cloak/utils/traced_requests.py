import logging
from typing import Optional, Dict
from contextlib import contextmanager
from urllib.parse import urlsplit

from opentelemetry.trace import Tracer

from cloak.utils import redact_url

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    method: str,
    target: Optional[str],
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("http.request.method", method)
        if target:
            span.set_attribute("proxy.target_host", urlsplit(target).netloc)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.debug(f"[Proxy] {method} {redact_url(target)}")
        yield span
