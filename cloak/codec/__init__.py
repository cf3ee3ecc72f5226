from .url_codec import (
    decode_target,
    decode_url,
    encode_url,
    parse_proxy_path,
    proxy_path,
    validate_scheme,
)
from .resolver import is_rewritable, resolve

__all__ = [
    "decode_target",
    "decode_url",
    "encode_url",
    "is_rewritable",
    "parse_proxy_path",
    "proxy_path",
    "resolve",
    "validate_scheme",
]
