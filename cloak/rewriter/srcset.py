"""Parsing and re-assembly of ``srcset`` candidate lists."""

from typing import Callable, List, Tuple


def parse_srcset(value: str) -> List[Tuple[str, str]]:
    """
    Split a srcset value into ``(url, descriptor)`` pairs.

    A URL is a run of non-whitespace characters, so commas inside it (as in
    ``data:`` URIs) do not split candidates. Descriptors run to the next
    comma outside parentheses.
    """
    candidates = []
    pos = 0
    length = len(value)
    while pos < length:
        while pos < length and (value[pos].isspace() or value[pos] == ","):
            pos += 1
        if pos >= length:
            break

        start = pos
        while pos < length and not value[pos].isspace():
            pos += 1
        url = value[start:pos]

        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            start = pos
            depth = 0
            while pos < length:
                char = value[pos]
                if char == "(":
                    depth += 1
                elif char == ")" and depth:
                    depth -= 1
                elif char == "," and depth == 0:
                    break
                pos += 1
            descriptor = value[start:pos].strip()

        if url:
            candidates.append((url, descriptor))
    return candidates


def format_srcset(candidates: List[Tuple[str, str]]) -> str:
    return ", ".join(f"{url} {descriptor}" if descriptor else url for url, descriptor in candidates)


def rewrite_srcset(value: str, proxify: Callable[[str], str]) -> Tuple[str, int]:
    """Proxify each candidate URL, keeping the descriptors."""
    candidates = parse_srcset(value)
    rewritten = [(proxify(url), descriptor) for url, descriptor in candidates]
    changed = sum(1 for (old, _), (new, _) in zip(candidates, rewritten) if old != new)
    return format_srcset(rewritten), changed
