# backend/matcher.py
import re
from typing import List

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase, turn punctuation into spaces, collapse whitespace."""
    t = _NON_ALNUM.sub(" ", (text or "").lower())
    return _WHITESPACE.sub(" ", t).strip()


def _tokens(text: str) -> List[str]:
    return text.split()


def matches(haystack: str, needle: str) -> bool:
    """
    True if `needle` is present in `haystack`, tolerant of case, punctuation
    and partial word overlap.

    A phrase hits on a plain substring match. Otherwise every needle token
    must find some haystack token that contains it or is contained by it,
    so "consumers" hits "consumer" and "partition" hits "partitions".

    Short needle tokens over-match ("id" hits "idle" and "valid"). That is
    known and kept on purpose.
    """
    n = normalize(needle)
    if not n:
        return False

    h = normalize(haystack)
    if n in h:
        return True

    h_tokens = _tokens(h)
    if not h_tokens:
        return False

    return all(
        any(ht in nt or nt in ht for ht in h_tokens)
        for nt in _tokens(n)
    )
