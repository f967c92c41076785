"""
Shared extraction patterns for one-time codes and verification links.

Both the email resolver and the secondary page resolver use these helpers so
there is exactly one definition of what a code looks like.

A code is a run of 4-8 ASCII digits bounded by word boundaries. It is always
handled as a string (leading zeros are significant).
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlparse

# re.ASCII keeps \d and \b to ASCII; non-ASCII digits never form a code.
CODE_PATTERN = re.compile(r"\b\d{4,8}\b", re.ASCII)
_CODE_FULLMATCH = re.compile(r"\d{4,8}", re.ASCII)

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

# Characters that commonly trail a URL in prose or HTML but are not part of it.
_URL_TRAILING = ".,;:!?)]}>"

DEFAULT_LINK_MARKERS = ("verify", "code")


def find_code(text: Optional[str]) -> Optional[str]:
    """Return the first 4-8 digit run in document order, or None."""
    if not text:
        return None
    match = CODE_PATTERN.search(text)
    return match.group(0) if match else None


def is_valid_code(value: Optional[str]) -> bool:
    """True when value is exactly 4-8 ASCII digits (no surrounding whitespace)."""
    if not isinstance(value, str):
        return False
    return _CODE_FULLMATCH.fullmatch(value) is not None


def iter_urls(text: Optional[str]) -> Iterable[str]:
    """Yield absolute http(s) URLs in document order, trailing punctuation stripped."""
    if not text:
        return
    for match in URL_PATTERN.finditer(text):
        url = match.group(0).rstrip(_URL_TRAILING)
        if url:
            yield url


def _path_has_marker(url: str, markers: Iterable[str]) -> bool:
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    return any(f"/{marker.lower()}" in path for marker in markers if marker)


def find_verification_link(
    text: Optional[str],
    markers: Iterable[str] = DEFAULT_LINK_MARKERS,
) -> Optional[str]:
    """
    Return the first URL whose path contains one of the marker tokens.

    A marker matches when it starts a path segment, e.g. "verify" matches
    https://www.netflix.com/account/travel/verify?nftoken=... but not a
    query string that merely mentions the word.
    """
    markers = tuple(markers)
    for url in iter_urls(text):
        if _path_has_marker(url, markers):
            return url
    return None
