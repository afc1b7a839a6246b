"""Embeddable bookmark content and the text built from it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 20000  # ~5000 tokens, safety limit per single input


@dataclass(frozen=True)
class BookmarkContent:
    """The subset of a bookmark that determines its embedding."""

    title: str | None = None
    notes: str | None = None
    content_text: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    site_name: str | None = None

    @classmethod
    def from_row(cls, row: Any, tags: Iterable[str] = ()) -> BookmarkContent:
        """Build from a ``bookmarks`` row plus its tag list."""
        return cls(
            title=row["title"],
            notes=row["notes"],
            content_text=row["content_text"],
            description=row["description"],
            tags=tuple(t for t in tags if t),
            site_name=row["site_name"],
        )

    @property
    def sorted_tags(self) -> list[str]:
        return sorted(self.tags)


def build_embedding_text(content: BookmarkContent) -> str:
    """Join the semantic fields, highest intent first, one per line.

    Order: title, notes, content text, description, tags, site name.
    Empty fields are left out.
    """
    tags = ", ".join(content.sorted_tags)
    parts = [
        content.title,
        content.notes,
        content.content_text,
        content.description,
        tags,
        content.site_name,
    ]
    return "\n".join(p.strip() for p in parts if p and p.strip())


def truncate_for_embedding(text: str, max_chars: int = MAX_EMBED_CHARS) -> str:
    """Truncate text to fit within embedding model token limits."""
    if len(text) <= max_chars:
        return text
    logger.warning(f"Truncating text from {len(text)} to {max_chars} chars")
    # Truncate at word boundary
    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."
