"""Resolution of (possibly relative) references against a page URL."""

import re
from typing import Optional
from urllib.parse import urljoin

from .url_codec import validate_scheme

# Schemes whose references must never be rewritten
OPAQUE_SCHEMES = ("javascript:", "data:", "mailto:", "tel:")

_STRIP_CHARS_RE = re.compile(r"[\t\r\n]")


def _is_opaque(reference: str) -> bool:
    return reference.lstrip().lower().startswith(OPAQUE_SCHEMES)


def is_rewritable(reference: Optional[str]) -> bool:
    """False for empty references, opaque schemes and in-page fragments."""
    if not reference or not reference.strip():
        return False
    return not (_is_opaque(reference) or reference.lstrip().startswith("#"))


def resolve(reference: str, base: str) -> Optional[str]:
    """
    Resolve ``reference`` against ``base``.

    Returns None when the reference is empty or opaque, cannot be resolved,
    or resolves to something other than an http/https URL. Callers leave the
    reference untouched in that case.
    """
    if not reference or not reference.strip() or _is_opaque(reference):
        return None
    cleaned = _STRIP_CHARS_RE.sub("", reference.strip())
    try:
        resolved = urljoin(base, cleaned)
    except ValueError:
        return None
    if not validate_scheme(resolved):
        return None
    return resolved
