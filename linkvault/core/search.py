"""Hybrid search over a user's bookmarks.

A search runs the hybrid path (query embedding, then blended vector and
text ranking) once. Any failure there downgrades to keyword search, which
is also attempted once; only a failing fallback reaches the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from linkvault.core.errors import ValidationError
from linkvault.core.query_cache import QueryEmbeddingCache
from linkvault.core.ranking import RankedBookmark
from linkvault.core.storage import DB

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 100
MAX_QUERY_LENGTH = 500


@dataclass
class SearchResponse:
    results: list[RankedBookmark] = field(default_factory=list)
    used_fallback: bool = False
    cache_hit: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "fallback": self.used_fallback,
        }


class HybridSearchEngine:
    def __init__(
        self,
        db: DB,
        cache: QueryEmbeddingCache,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
        max_query_length: int = MAX_QUERY_LENGTH,
    ):
        self._db = db
        self._cache = cache
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._max_query_length = max_query_length

    def validate(self, raw_query: str | None, limit: int | None) -> tuple[str, int]:
        query = (raw_query or "").strip()
        if not query:
            raise ValidationError("Query is required")
        if len(query) > self._max_query_length:
            raise ValidationError(f"Query must be at most {self._max_query_length} characters")

        if limit is None:
            limit = self._default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= self._max_limit:
            raise ValidationError(f"limit must be an integer between 1 and {self._max_limit}")
        return query, limit

    async def search(self, owner_id: str, raw_query: str | None, limit: int | None = None) -> SearchResponse:
        """Search owner_id's non-archived bookmarks.

        Raises:
            ValidationError: Empty or overlong query, or limit out of bounds.
            StoreError: Both the hybrid path and the keyword fallback failed.
        """
        query, limit = self.validate(raw_query, limit)

        try:
            embedding = await self._cache.get_or_create(query)
            results = self._db.match_bookmarks(owner_id, embedding.vector, query, limit)
            return SearchResponse(results=results, used_fallback=False, cache_hit=embedding.cache_hit)
        except Exception as e:
            # Hybrid path is optional; keyword fallback below
            logger.warning(f"Hybrid search failed, falling back to keyword search: {type(e).__name__}: {e}")

        results = self._db.keyword_search(owner_id, query, limit)
        return SearchResponse(results=results, used_fallback=True)
