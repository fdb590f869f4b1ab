from __future__ import annotations

import re
from urllib.parse import urlsplit

ARCHIVABLE_SCHEMES = {"http", "https"}
# Whitespace, quotes, angle/curly/square brackets and wiki-link pipes end a match.
URL_CANDIDATE_RE = re.compile(r"https?://[^\s<>\"`|\[\]{}\\^]+", re.IGNORECASE)
TRAILING_PUNCTUATION = ".,;:!?*'"


def find_urls(text: str) -> set[str]:
    """Return every archivable absolute URL mentioned in free text."""
    if not text or not text.strip():
        return set()

    found: set[str] = set()
    for match in URL_CANDIDATE_RE.finditer(text):
        candidate = strip_trailing_punctuation(match.group(0))
        if is_archivable_url(candidate):
            found.add(candidate)
    return found


def strip_trailing_punctuation(candidate: str) -> str:
    url = candidate
    while url:
        last = url[-1]
        if last in TRAILING_PUNCTUATION:
            url = url[:-1]
            continue
        # Keep ")" when it closes a "(" inside the URL, e.g. wiki article titles.
        if last == ")" and url.count(")") > url.count("("):
            url = url[:-1]
            continue
        break
    return url


def is_archivable_url(candidate: str) -> bool:
    try:
        parsed = urlsplit(candidate.strip())
        hostname = parsed.hostname
    except ValueError:
        return False
    return parsed.scheme.lower() in ARCHIVABLE_SCHEMES and bool(hostname)
