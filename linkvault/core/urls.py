"""URL normalization, domain detection and bookmark type rules."""

from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse

NOTE_SCHEME = "note://"

# Bare domains like "github.com" or "docs.python.org/3/"
_BARE_DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}(?::\d+)?(?:/\S*)?$", re.IGNORECASE)

SOCIAL_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "x": [re.compile(r"^https?://(www\.)?(twitter\.com|x\.com)/", re.I)],
    "youtube": [
        re.compile(r"^https?://(www\.)?(youtube\.com|youtu\.be)/", re.I),
        re.compile(r"^https?://(m\.)?youtube\.com/", re.I),
    ],
    "linkedin": [re.compile(r"^https?://(www\.)?linkedin\.com/", re.I)],
    "facebook": [
        re.compile(r"^https?://(www\.)?(facebook\.com|fb\.com|fb\.watch)/", re.I),
        re.compile(r"^https?://(m\.)?facebook\.com/", re.I),
    ],
    "instagram": [re.compile(r"^https?://(www\.)?instagram\.com/", re.I)],
}

BOOKMARK_TYPES = ["x", "youtube", "linkedin", "facebook", "instagram", "websites", "snippets"]


def is_note_url(url: str) -> bool:
    return url.startswith(NOTE_SCHEME)


def normalize_url(url: str | None) -> str | None:
    """Normalize URL for deduplication.

    - Convert to lowercase
    - Remove www. prefix
    - Remove trailing slash
    - Normalize http to https
    - Remove query parameters and fragments
    """
    if not url:
        return None
    url = url.strip().lower()
    if url.startswith("http://"):
        url = "https://" + url[7:]
    parsed = urlparse(url)
    netloc = parsed.netloc.replace("www.", "")
    normalized = urlunparse((
        parsed.scheme,
        netloc,
        parsed.path.rstrip("/"),
        "",  # params
        "",  # query
        "",  # fragment
    ))
    return normalized or None


def url_domain(query: str) -> str | None:
    """Return the domain if the query is a URL or a bare domain, else None."""
    q = query.strip()
    if not q or any(ch.isspace() for ch in q):
        return None

    lowered = q.lower()
    if lowered.startswith(("http://", "https://")):
        host = urlparse(lowered).hostname
    elif _BARE_DOMAIN_RE.match(q):
        host = urlparse("https://" + lowered).hostname
    else:
        return None

    if not host or "." not in host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host


def detect_bookmark_type(url: str, is_text_note: bool = False) -> str:
    """Detect the bookmark type from a URL; used as an automatic tag."""
    if is_text_note or is_note_url(url):
        return "snippets"

    for bookmark_type, patterns in SOCIAL_PATTERNS.items():
        for pattern in patterns:
            if pattern.match(url):
                return bookmark_type

    return "websites"
