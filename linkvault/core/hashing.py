"""Deterministic fingerprints for change detection and cache keys."""

from __future__ import annotations

import hashlib
import json

from linkvault.core.content import BookmarkContent


def semantic_source_hash(content: BookmarkContent) -> str:
    """SHA-256 hex digest over the semantic fields of a bookmark.

    Fields are serialized in a fixed order with tags sorted, so two contents
    that differ only in tag order hash identically. ``None`` and empty
    strings are treated alike.
    """
    payload = [
        content.title or "",
        content.description or "",
        content.notes or "",
        content.content_text or "",
        content.sorted_tags,
        content.site_name or "",
    ]
    canonical = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def normalize_query(query: str) -> str:
    """Normalize a search query for consistent hashing.

    - Trim whitespace
    - Lowercase
    - Collapse whitespace runs to a single space
    """
    return " ".join(query.lower().split())


def query_hash(query: str) -> str:
    """SHA-256 hex digest of the normalized query."""
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()
