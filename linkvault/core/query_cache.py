"""Query embedding cache keyed by the hash of the normalized query."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from linkvault.core.background import TaskRunner
from linkvault.core.embedding_providers import EmbeddingProvider
from linkvault.core.embeddings import parse_vector
from linkvault.core.errors import StoreError
from linkvault.core.hashing import normalize_query, query_hash
from linkvault.core.storage import DB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryEmbedding:
    vector: list[float]
    model: str
    cache_hit: bool
    query_hash: str


class QueryEmbeddingCache:
    """Memoizes query -> embedding lookups.

    Availability wins over strict caching: a failing cache store degrades to
    generating the embedding, and only a provider failure is raised.
    Concurrent misses on one query may each call the provider; the last
    write to the cache row wins.
    """

    def __init__(
        self,
        db: DB,
        provider: EmbeddingProvider,
        tasks: TaskRunner,
        max_age_days: int = 0,
    ):
        self._db = db
        self._provider = provider
        self._tasks = tasks
        self._max_age_days = max_age_days

    async def get_or_create(self, raw_query: str) -> QueryEmbedding:
        """Return the embedding for raw_query, generating it on a miss.

        Raises:
            ProviderError: If the query had to be embedded and that failed.
        """
        normalized = normalize_query(raw_query)
        key = query_hash(normalized)

        cached = self._lookup(key)
        if cached is not None:
            vector, model = cached
            self._tasks.spawn(self._touch(key), name=f"touch-query-cache-{key[:8]}")
            logger.debug(f"Query cache hit for {normalized!r}")
            return QueryEmbedding(vector=vector, model=model, cache_hit=True, query_hash=key)

        result = await self._provider.embed(normalized)

        try:
            self._db.save_query_embedding(
                query_hash=key,
                query_text=normalized,
                vector=result.vector,
                model=result.model,
            )
        except StoreError as e:
            logger.warning(f"Failed to cache query embedding: {e}")

        return QueryEmbedding(vector=result.vector, model=result.model, cache_hit=False, query_hash=key)

    def _lookup(self, key: str) -> tuple[list[float], str] | None:
        """Return a usable cached (vector, model), or None to take the miss path."""
        try:
            row = self._db.get_cached_query_embedding(key)
        except StoreError as e:
            logger.warning(f"Query cache lookup failed, regenerating: {e}")
            return None

        if row is None:
            return None

        if row["embedding_model"] != self._provider.model_id:
            logger.info(
                f"Cached query embedding is from {row['embedding_model']}, "
                f"provider uses {self._provider.model_id}; regenerating"
            )
            return None

        if self._expired(row["last_used_at"]):
            logger.debug(f"Cached query embedding {key[:8]} expired")
            return None

        vector = parse_vector(row["embedding"])
        if vector is None:
            logger.warning(f"Corrupt cached embedding for query {key[:8]}; regenerating")
            return None
        return vector, row["embedding_model"]

    def _expired(self, last_used_at: str | None) -> bool:
        if self._max_age_days <= 0 or not last_used_at:
            return False
        # SQLite datetime('now') is UTC without offset
        try:
            used = datetime.fromisoformat(last_used_at).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Unreadable cache timestamp {last_used_at!r}; treating entry as expired")
            return True
        return datetime.now(timezone.utc) - used > timedelta(days=self._max_age_days)

    async def _touch(self, key: str) -> None:
        try:
            self._db.touch_query_cache(key)
        except StoreError as e:
            logger.warning(f"Query cache touch failed: {e}")
