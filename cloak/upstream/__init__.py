from .fetcher import (
    FORWARD_ALLOW,
    ORIGINAL_LOCATION,
    UpstreamFetcher,
    create_http_client,
    stash_location,
)
from .transformer import HIDE_HEADERS, ResponseTransformer

__all__ = [
    "FORWARD_ALLOW",
    "HIDE_HEADERS",
    "ORIGINAL_LOCATION",
    "ResponseTransformer",
    "UpstreamFetcher",
    "create_http_client",
    "stash_location",
]
