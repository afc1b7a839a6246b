"""Bookmark lifecycle: save, edit, delete and metadata refresh.

Every change to semantic fields schedules a detached reindex; the caller
gets its answer without waiting for the embedding provider.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from linkvault.core.background import TaskRunner
from linkvault.core.errors import Forbidden, MetadataUnavailable, NotFound, ValidationError
from linkvault.core.indexer import DocumentEmbeddingIndexer
from linkvault.core.metadata import MetadataFetcher
from linkvault.core.storage import DB
from linkvault.core.urls import NOTE_SCHEME, detect_bookmark_type, is_note_url, normalize_url

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
MAX_NOTE_LENGTH = 10000
NOTE_TITLE_LENGTH = 80


class BookmarkService:
    def __init__(
        self,
        db: DB,
        indexer: DocumentEmbeddingIndexer,
        fetcher: MetadataFetcher,
        tasks: TaskRunner,
    ):
        self._db = db
        self._indexer = indexer
        self._fetcher = fetcher
        self._tasks = tasks

    def get_owned(self, owner_id: str, bookmark_id: int) -> dict[str, Any]:
        bookmark = self._db.get_bookmark(bookmark_id)
        if bookmark is None:
            raise NotFound("Bookmark not found")
        if bookmark["user_id"] != owner_id:
            raise Forbidden("Forbidden")
        return bookmark

    async def save_url(self, owner_id: str, url: str, notes: str | None = None) -> dict[str, Any]:
        """Save a URL bookmark; metadata and embedding follow in the background.

        Raises:
            ValidationError: Not an http(s) URL, or too long.
            Conflict: The owner already saved this URL.
        """
        url = (url or "").strip()
        if not url.lower().startswith(("http://", "https://")) or len(url) > MAX_URL_LENGTH:
            raise ValidationError("A valid http(s) URL is required")

        bookmark_id = self._db.create_bookmark(
            user_id=owner_id,
            url=url,
            url_canonical=normalize_url(url),
            notes=(notes or "").strip() or None,
        )
        self._db.add_tag(bookmark_id, owner_id, detect_bookmark_type(url))
        self._tasks.spawn(
            self._refresh_then_reindex(owner_id, bookmark_id),
            name=f"refresh-bookmark-{bookmark_id}",
        )
        return self._db.get_bookmark(bookmark_id)

    async def save_note(self, owner_id: str, text: str) -> dict[str, Any]:
        """Save a text note. Its first line becomes the title."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("Note text is required")
        if len(text) > MAX_NOTE_LENGTH:
            raise ValidationError(f"Note must be at most {MAX_NOTE_LENGTH} characters")

        title = text.splitlines()[0].strip()[:NOTE_TITLE_LENGTH]
        bookmark_id = self._db.create_bookmark(
            user_id=owner_id,
            url=f"{NOTE_SCHEME}{uuid.uuid4()}",
            title=title,
            notes=text,
        )
        self._db.add_tag(bookmark_id, owner_id, "snippets")
        self._schedule_reindex(owner_id, bookmark_id)
        return self._db.get_bookmark(bookmark_id)

    async def update(
        self,
        owner_id: str,
        bookmark_id: int,
        *,
        title: str | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
        archived: bool | None = None,
    ) -> dict[str, Any]:
        """Apply user edits. Fields left as None are not touched."""
        self.get_owned(owner_id, bookmark_id)

        fields: dict[str, Any] = {}
        if title is not None:
            fields["title"] = title.strip() or None
        if notes is not None:
            fields["notes"] = notes.strip() or None
        if archived is not None:
            fields["archived"] = int(archived)
        self._db.update_bookmark(bookmark_id, **fields)
        if tags is not None:
            self._db.set_tags(bookmark_id, owner_id, tags)

        if title is not None or notes is not None or tags is not None:
            self._schedule_reindex(owner_id, bookmark_id)
        return self._db.get_bookmark(bookmark_id)

    def delete(self, owner_id: str, bookmark_id: int) -> None:
        self.get_owned(owner_id, bookmark_id)
        if not self._db.delete_bookmark(bookmark_id, owner_id):
            raise NotFound("Bookmark not found")

    async def refresh_metadata(self, owner_id: str, bookmark_id: int) -> dict[str, Any]:
        """Re-fetch page metadata for a URL bookmark, then schedule a reindex.

        Raises:
            NotFound, Forbidden: Ownership check failed.
            ValidationError: The bookmark is a text note.
            MetadataUnavailable: No metadata could be fetched.
        """
        bookmark = self.get_owned(owner_id, bookmark_id)
        if is_note_url(bookmark["url"]):
            raise ValidationError("Cannot refresh metadata for text notes")

        metadata = await self._fetcher.fetch(bookmark["url"])
        if metadata is None:
            raise MetadataUnavailable("Could not fetch metadata from URL")

        fields = metadata.to_bookmark_fields()
        if not fields["content_text"]:
            # Keep previously extracted text
            fields.pop("content_text")
        self._db.update_bookmark(bookmark_id, **fields)

        self._schedule_reindex(owner_id, bookmark_id)
        return self._db.get_bookmark(bookmark_id)

    def _schedule_reindex(self, owner_id: str, bookmark_id: int) -> None:
        self._tasks.spawn(
            self._indexer.reindex(bookmark_id, owner_id),
            name=f"reindex-bookmark-{bookmark_id}",
        )

    async def _refresh_then_reindex(self, owner_id: str, bookmark_id: int) -> None:
        try:
            await self.refresh_metadata(owner_id, bookmark_id)
        except MetadataUnavailable:
            logger.info(f"No metadata for bookmark {bookmark_id}; indexing what we have")
            self._schedule_reindex(owner_id, bookmark_id)
