"""
Reversible encoding of absolute URLs into tokens that fit in a path segment.

A token is the unpadded URL-safe base64 of the UTF-8 bytes of the URL, so it
never contains ``+``, ``/`` or ``=`` and ``decode_url(encode_url(u)) == u``
holds byte for byte.
"""

import base64
import binascii
import re
from typing import Optional
from urllib.parse import urlsplit

from cloak.errors import MalformedToken, UnsupportedScheme

ALLOWED_SCHEMES = ("http", "https")

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def encode_url(url: str) -> str:
    """Encode an absolute URL into a transport-safe token."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def decode_url(token: str) -> str:
    """
    Decode a token produced by :func:`encode_url`.

    Raises:
        MalformedToken: if the token is not base64url, is not UTF-8, or does
            not decode to an absolute URL.
    """
    if not token or not _TOKEN_RE.match(token):
        raise MalformedToken("Token contains characters outside the base64url alphabet.")
    if len(token) % 4 == 1:
        raise MalformedToken("Token has an impossible base64 length.")

    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise MalformedToken(f"Token is not valid base64url: {e}") from e

    try:
        url = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedToken("Token does not decode to UTF-8 text.") from e

    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise MalformedToken(f"Token does not decode to a URL: {e}") from e
    if not parts.scheme or not parts.netloc:
        raise MalformedToken("Token does not decode to an absolute URL.")
    return url


def validate_scheme(url: str) -> bool:
    """True only for http/https URLs."""
    try:
        scheme = urlsplit(url).scheme
    except ValueError:
        return False
    return scheme.lower() in ALLOWED_SCHEMES


def decode_target(token: str) -> str:
    """Decode a token and check that the target may be fetched."""
    url = decode_url(token)
    if not validate_scheme(url):
        raise UnsupportedScheme(f"Unsupported target scheme: {urlsplit(url).scheme}")
    return url


def proxy_path(url: str, prefix: str = "/p") -> str:
    """Proxy address (``<prefix>/<token>``) of an absolute URL."""
    return f"{prefix}/{encode_url(url)}"


def parse_proxy_path(path: str, prefix: str = "/p") -> Optional[str]:
    """
    Return the target addressed by a proxy path, or None when ``path`` is
    not of the form ``<prefix>/<valid token>``.
    """
    marker = f"{prefix}/"
    if not path.startswith(marker):
        return None
    token = path[len(marker):]
    try:
        return decode_target(token)
    except (MalformedToken, UnsupportedScheme):
        return None
