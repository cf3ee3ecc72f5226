"""
Rewriting of URLs inside CSS text (``style`` attributes and ``<style>`` blocks).

The scanner is a regular expression: escaped quotes and nested parentheses
inside ``url()`` are not supported.
"""

import re
from typing import Callable

CSS_URL_RE = re.compile(r"(url\(\s*)(['\"]?)(.*?)\2(\s*\))", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"(@import\s+)(['\"])(.*?)\2", re.IGNORECASE)


def rewrite_css_urls(css: str, proxify: Callable[[str], str]) -> tuple[str, int]:
    """
    Apply ``proxify`` to every ``url(...)`` in ``css``.

    Returns the new text and the number of URLs that changed.
    """
    changed = 0

    def _replace(match: re.Match) -> str:
        nonlocal changed
        opening, quote, url, closing = match.groups()
        new_url = proxify(url)
        if new_url != url:
            changed += 1
        return f"{opening}{quote}{new_url}{quote}{closing}"

    return CSS_URL_RE.sub(_replace, css), changed


def rewrite_stylesheet(css: str, proxify: Callable[[str], str]) -> tuple[str, int]:
    """Like :func:`rewrite_css_urls`, also covering ``@import "..."`` rules."""
    css, changed = rewrite_css_urls(css, proxify)

    def _replace_import(match: re.Match) -> str:
        nonlocal changed
        opening, quote, url = match.groups()
        new_url = proxify(url)
        if new_url != url:
            changed += 1
        return f"{opening}{quote}{new_url}{quote}"

    return CSS_IMPORT_RE.sub(_replace_import, css), changed
