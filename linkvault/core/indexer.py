"""Document embedding indexer.

Keeps each bookmark's stored embedding consistent with its semantic
fields. A content hash decides whether the embedding provider is called at
all, so metadata refreshes that change nothing semantic cost nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from linkvault.core.content import BookmarkContent, build_embedding_text, truncate_for_embedding
from linkvault.core.embedding_providers import EmbeddingProvider
from linkvault.core.errors import Forbidden, LinkvaultError, NotFound, ValidationError
from linkvault.core.hashing import semantic_source_hash
from linkvault.core.storage import DB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReindexResult:
    ok: bool
    skipped: bool
    semantic_source_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "skipped": self.skipped, "semantic_source_hash": self.semantic_source_hash}


class DocumentEmbeddingIndexer:
    def __init__(self, db: DB, provider: EmbeddingProvider, max_embed_chars: int = 20000):
        self._db = db
        self._provider = provider
        self._max_embed_chars = max_embed_chars

    def load_content(self, bookmark: dict[str, Any]) -> BookmarkContent:
        return BookmarkContent.from_row(bookmark, tags=bookmark.get("tags") or self._db.get_tags(bookmark["id"]))

    async def reindex(
        self,
        bookmark_id: int,
        owner_id: str,
        content: BookmarkContent | None = None,
    ) -> ReindexResult:
        """Recompute the embedding of a bookmark if its semantic source changed.

        Args:
            bookmark_id: Bookmark to index.
            owner_id: Caller's user id; must own the bookmark.
            content: Semantic fields to embed. Loaded from the store if omitted.

        Returns:
            ReindexResult with skipped=True when the stored hash and model
            already match.

        Raises:
            NotFound: Bookmark does not exist.
            Forbidden: Bookmark belongs to another user.
            ValidationError: There is no text to embed.
            ProviderError: Embedding generation failed.
            StoreError: Reading or writing the datastore failed.
        """
        bookmark = self._db.get_bookmark(bookmark_id)
        if bookmark is None:
            raise NotFound(f"Bookmark {bookmark_id} not found")
        if bookmark["user_id"] != owner_id:
            raise Forbidden(f"Bookmark {bookmark_id} belongs to another user")

        if content is None:
            content = self.load_content(bookmark)

        source_hash = semantic_source_hash(content)
        existing = self._db.get_document_embedding(bookmark_id)
        if (
            existing is not None
            and existing["semantic_source_hash"] == source_hash
            and existing["embedding_model"] == self._provider.model_id
        ):
            logger.debug(f"Bookmark {bookmark_id} unchanged, skipping embedding")
            return ReindexResult(ok=True, skipped=True, semantic_source_hash=source_hash)

        text = truncate_for_embedding(build_embedding_text(content), self._max_embed_chars)
        if not text:
            raise ValidationError(f"Bookmark {bookmark_id} has no content to embed")
        result = await self._provider.embed(text)

        self._db.upsert_document_embedding(
            bookmark_id=bookmark_id,
            user_id=owner_id,
            vector=result.vector,
            model=result.model,
            semantic_source_hash=source_hash,
            content_for_embedding=text,
        )
        logger.info(f"Embedded bookmark {bookmark_id} with {result.model}")
        return ReindexResult(ok=True, skipped=False, semantic_source_hash=source_hash)

    async def reindex_pending(self, limit: int = 100, owner_id: str | None = None) -> dict[str, int]:
        """Embed bookmarks that have no embedding from the current model.

        Only bookmarks with some semantic text are picked, optionally for one
        owner only, so permanently empty bookmarks never block the queue.

        Per-bookmark failures are counted and logged, not raised.

        Returns:
            Dict with counts: processed, skipped, failed, remaining
        """
        model = self._provider.model_id
        pending = self._db.get_bookmarks_without_embedding(limit=limit, user_id=owner_id, model=model)

        processed = 0
        skipped = 0
        failed = 0
        for item in pending:
            try:
                result = await self.reindex(item["id"], item["user_id"])
            except LinkvaultError as e:
                failed += 1
                logger.error(f"Failed to embed bookmark {item['id']}: {e}")
                continue
            if result.skipped:
                skipped += 1
            else:
                processed += 1

        remaining = self._db.count_bookmarks_without_embedding(user_id=owner_id, model=model)
        return {"processed": processed, "skipped": skipped, "failed": failed, "remaining": remaining}
