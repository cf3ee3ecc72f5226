from typing import Optional
from urllib.parse import urlsplit


def redact_url(url: Optional[str]) -> str:
    """Drop query and fragment from a URL so logs never carry user data."""
    if not url:
        return "<empty>"
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparsable>"
    redacted = f"{parts.scheme}://{parts.netloc}{parts.path}" if parts.scheme else parts.path
    if parts.query or parts.fragment:
        redacted += "?<redacted>"
    return redacted
