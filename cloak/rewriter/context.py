from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from cloak.codec import is_rewritable, parse_proxy_path, proxy_path, resolve


class ReferenceKind(str, Enum):
    """Places in a document that can carry a URL."""

    LINK = "link"
    RESOURCE = "resource"
    STYLESHEET = "stylesheet"
    REDIRECT_META = "redirect-meta"
    FORM_ACTION = "form-action"
    SRCSET_ENTRY = "srcset-entry"
    INLINE_STYLE_URL = "inline-style-url"
    STYLE_BLOCK_URL = "style-block-url"


@dataclass(frozen=True)
class RewriteContext:
    """
    Everything needed to proxy the references of one document.

    Attributes:
        base_url: Absolute URL the document was fetched from
        proxy_prefix: Path under which the proxy addresses targets
        proxy_origin: Public origin of the proxy (scheme://host[:port]), if known
        inject_client_script: Whether to append the client guard script
    """

    base_url: str
    proxy_prefix: str = "/p"
    proxy_origin: Optional[str] = None
    inject_client_script: bool = True

    def is_proxied(self, reference: str) -> bool:
        """True when ``reference`` already addresses a target through the proxy."""
        try:
            parts = urlsplit(reference.strip())
        except ValueError:
            return False

        if parts.scheme or parts.netloc:
            if not self.proxy_origin:
                return False
            origin = f"{parts.scheme}://{parts.netloc}".lower()
            if origin != self.proxy_origin.rstrip("/").lower():
                return False
        return parse_proxy_path(parts.path, self.proxy_prefix) is not None

    def proxify(self, reference: str) -> str:
        """Proxy address for ``reference``, or ``reference`` itself if it must stay as is."""
        if not is_rewritable(reference) or self.is_proxied(reference):
            return reference
        resolved = resolve(reference, self.base_url)
        if resolved is None:
            return reference
        return proxy_path(resolved, self.proxy_prefix)
