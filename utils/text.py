"""Small text helpers shared by the context sources, rankers and CLI."""

import re
from typing import Any

_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    "a an and are as at be by for from how in is it of on or that the to what when "
    "where which who why with".split()
)


def collapse_whitespace(text: Any) -> str:
    return _WHITESPACE.sub(" ", str(text or "")).strip()


def truncate_text(text: Any, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters, marking the cut with '...'."""
    raw = str(text or "")
    if len(raw) <= max_length:
        return raw
    if max_length <= 3:
        return raw[:max_length]
    return raw[: max_length - 3].rstrip() + "..."


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens with common stopwords removed."""
    return [w for w in _WORD.findall(text.lower()) if w not in STOPWORDS]
