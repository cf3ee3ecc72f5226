"""
HTML rewriting engine.

The document is parsed once into a BeautifulSoup tree, every tag is visited
once, and each URL-bearing attribute or CSS text is replaced by its proxy
address. References with opaque schemes (``javascript:``, ``data:``,
``mailto:``, ``tel:``) and in-page fragments are never touched, and
references that are already proxy addresses are left as they are, so
rewriting a rewritten document changes nothing.

The first ``<base href>`` becomes the base for every relative reference and
all ``<base href>`` elements are removed.
"""

import re
from collections import Counter
from dataclasses import replace
from typing import Optional

from bs4 import BeautifulSoup, Doctype, Tag

from cloak.codec import is_rewritable, resolve
from cloak.errors import MarkupParseFailure
from .client_script import GUARD_ATTRIBUTE, guard_script
from .context import ReferenceKind, RewriteContext
from .css import rewrite_css_urls, rewrite_stylesheet
from .srcset import rewrite_srcset

RESOURCE_TAGS = frozenset(
    ["link", "script", "img", "iframe", "video", "audio", "source", "embed", "track"]
)
ANCHOR_REL = ("noreferrer", "noopener")

# Resource attributes other than src/href, per tag
EXTRA_RESOURCE_ATTRS = {"video": "poster", "object": "data"}

_REFRESH_URL_RE = re.compile(r"(;\s*url\s*=\s*)(.*)$", re.IGNORECASE | re.DOTALL)


class MarkupRewriter:
    """Rewrites one HTML document for a given :class:`RewriteContext`."""

    def __init__(self, context: RewriteContext):
        self.context = context
        # Address the document itself was fetched from, whatever its <base>
        self.document_url = context.base_url
        self.rewritten: Counter = Counter()

    def rewrite(self, html: str) -> str:
        """
        Rewrite ``html`` and return the serialized document.

        Raises:
            MarkupParseFailure: if the document cannot be parsed or serialized.
        """
        try:
            soup = BeautifulSoup(html, "html.parser", multi_valued_attributes=None)
        except Exception as e:
            raise MarkupParseFailure(f"Unable to parse document: {e}") from e

        self._apply_base(soup)
        for tag in soup.find_all(True):
            self._rewrite_tag(tag)

        if self.context.inject_client_script:
            self._inject_guard(soup)

        try:
            return str(soup)
        except Exception as e:
            raise MarkupParseFailure(f"Unable to serialize document: {e}") from e

    def _apply_base(self, soup: BeautifulSoup) -> None:
        """
        Resolve the document against its first ``<base href>`` and drop every
        ``<base href>``: the browser would resolve proxy addresses against it.
        """
        bases = soup.find_all("base", href=True)
        if not bases:
            return
        base_url = resolve(bases[0]["href"], self.context.base_url)
        if base_url is not None:
            self.context = replace(self.context, base_url=base_url)
        for base in bases:
            base.decompose()

    def _proxify(self, reference: str, kind: ReferenceKind) -> str:
        new_reference = self.context.proxify(reference)
        if new_reference != reference:
            self.rewritten[kind] += 1
        return new_reference

    def _rewrite_tag(self, tag: Tag) -> None:
        name = tag.name
        if name == "a":
            self._rewrite_anchor(tag)
        elif name in RESOURCE_TAGS:
            self._rewrite_resource(tag)
        elif name == "meta":
            self._rewrite_meta_refresh(tag)
        elif name == "form":
            self._rewrite_form(tag)
        elif name == "style":
            self._rewrite_style_block(tag)
        elif name == "input":
            if (tag.get("type") or "").strip().lower() == "image":
                self._rewrite_attribute(tag, "src", ReferenceKind.RESOURCE)

        if name in EXTRA_RESOURCE_ATTRS:
            self._rewrite_attribute(tag, EXTRA_RESOURCE_ATTRS[name], ReferenceKind.RESOURCE)

        if tag.get("srcset"):
            tag["srcset"], count = rewrite_srcset(tag["srcset"], self.context.proxify)
            self.rewritten[ReferenceKind.SRCSET_ENTRY] += count

        if tag.get("style"):
            tag["style"], count = rewrite_css_urls(tag["style"], self.context.proxify)
            self.rewritten[ReferenceKind.INLINE_STYLE_URL] += count

    def _rewrite_attribute(self, tag: Tag, attr: str, kind: ReferenceKind) -> None:
        if tag.get(attr):
            tag[attr] = self._proxify(tag[attr], kind)

    def _rewrite_anchor(self, tag: Tag) -> None:
        href = tag.get("href")
        if not is_rewritable(href):
            return
        tag["href"] = self._proxify(href, ReferenceKind.LINK)

        rel = (tag.get("rel") or "").split()
        for value in ANCHOR_REL:
            if value not in rel:
                rel.append(value)
        tag["rel"] = " ".join(rel)

    def _rewrite_resource(self, tag: Tag) -> None:
        if tag.get("src"):
            attr = "src"
        elif tag.get("href"):
            attr = "href"
        else:
            return

        kind = ReferenceKind.RESOURCE
        if tag.name == "link" and "stylesheet" in (tag.get("rel") or "").lower().split():
            kind = ReferenceKind.STYLESHEET
        tag[attr] = self._proxify(tag[attr], kind)

    def _rewrite_meta_refresh(self, tag: Tag) -> None:
        if (tag.get("http-equiv") or "").strip().lower() != "refresh":
            return
        content = tag.get("content")
        if not content:
            return
        match = _REFRESH_URL_RE.search(content)
        if not match:
            return

        target = match.group(2).strip()
        quote = ""
        if len(target) >= 2 and target[0] in "'\"" and target[-1] == target[0]:
            quote = target[0]
            target = target[1:-1]
        if not target:
            return

        new_target = self._proxify(target, ReferenceKind.REDIRECT_META)
        tag["content"] = f"{content[:match.start()]}{match.group(1)}{quote}{new_target}{quote}"

    def _rewrite_form(self, tag: Tag) -> None:
        action = (tag.get("action") or "").strip()
        # An empty action submits to the page itself
        tag["action"] = self._proxify(action or self.document_url, ReferenceKind.FORM_ACTION)

    def _rewrite_style_block(self, tag: Tag) -> None:
        css = tag.string
        if not css:
            return
        new_css, count = rewrite_stylesheet(str(css), self.context.proxify)
        if count:
            css.replace_with(type(css)(new_css))
            self.rewritten[ReferenceKind.STYLE_BLOCK_URL] += count

    def _inject_guard(self, soup: BeautifulSoup) -> None:
        if soup.find("script", attrs={GUARD_ATTRIBUTE: True}) is not None:
            return

        script = soup.new_tag("script", attrs={GUARD_ATTRIBUTE: ""})
        script.string = guard_script(self.context.proxy_prefix)

        head: Optional[Tag] = soup.head
        if head is None:
            head = soup.new_tag("head")
            if soup.html is not None:
                soup.html.insert(0, head)
            else:
                # Keep a leading doctype first
                index = 0
                for position, child in enumerate(soup.contents):
                    if isinstance(child, Doctype):
                        index = position + 1
                soup.insert(index, head)
        head.append(script)


def rewrite_html(html: str, context: RewriteContext) -> str:
    """Convenience wrapper around :class:`MarkupRewriter`."""
    return MarkupRewriter(context).rewrite(html)
