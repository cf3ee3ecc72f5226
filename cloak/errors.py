"""
Error taxonomy of the proxy.

Client errors (missing or unusable target) map to 400, upstream errors to 500.
Markup failures never reach the client: the transformer falls back to the
unmodified document.
"""


class ProxyError(Exception):
    """Base class for every error raised by the proxy."""

    status_code = 500


class MissingTarget(ProxyError):
    status_code = 400

    def __init__(self, message: str = "Missing `u` parameter (base64url-encoded target URL)."):
        super().__init__(message)


class InvalidTarget(ProxyError):
    status_code = 400


class MalformedToken(InvalidTarget):
    """The token is not valid base64url or does not decode to a URL."""


class UnsupportedScheme(InvalidTarget):
    """The decoded target uses a scheme other than http/https."""


class UpstreamFetchFailure(ProxyError):
    """Network, DNS or TLS failure while contacting the origin."""


class UpstreamTimeout(UpstreamFetchFailure):
    pass


class MarkupParseFailure(ProxyError):
    """The HTML document could not be parsed or re-serialized."""
