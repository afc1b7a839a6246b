"""Process-wide wiring of the search and indexing components."""

from __future__ import annotations

from dataclasses import dataclass

from linkvault.core.background import TaskRunner
from linkvault.core.bookmarks import BookmarkService
from linkvault.core.embedding_providers import EmbeddingProvider, get_provider
from linkvault.core.indexer import DocumentEmbeddingIndexer
from linkvault.core.metadata import MetadataFetcher
from linkvault.core.query_cache import QueryEmbeddingCache
from linkvault.core.search import HybridSearchEngine
from linkvault.core.settings import Settings
from linkvault.core.storage import DB, init_db


@dataclass
class Services:
    settings: Settings
    db: DB
    provider: EmbeddingProvider
    tasks: TaskRunner
    cache: QueryEmbeddingCache
    indexer: DocumentEmbeddingIndexer
    search: HybridSearchEngine
    bookmarks: BookmarkService
    fetcher: MetadataFetcher

    async def close(self) -> None:
        """Finish background work and release connections."""
        await self.tasks.drain()
        await self.fetcher.close()
        self.db.conn.close()

    @classmethod
    def build(
        cls,
        settings: Settings,
        db: DB,
        provider: EmbeddingProvider,
        fetcher: MetadataFetcher | None = None,
    ) -> Services:
        tasks = TaskRunner()
        cache = QueryEmbeddingCache(db, provider, tasks, max_age_days=settings.query_cache_max_age_days)
        indexer = DocumentEmbeddingIndexer(db, provider, max_embed_chars=settings.max_embed_chars)
        search = HybridSearchEngine(
            db,
            cache,
            default_limit=settings.search_default_limit,
            max_limit=settings.search_max_limit,
            max_query_length=settings.query_max_length,
        )
        fetcher = fetcher or MetadataFetcher(
            direct_timeout=settings.metadata_timeout,
            extractor_timeout=settings.extractor_timeout,
        )
        return cls(
            settings=settings,
            db=db,
            provider=provider,
            tasks=tasks,
            cache=cache,
            indexer=indexer,
            search=search,
            bookmarks=BookmarkService(db, indexer, fetcher, tasks),
            fetcher=fetcher,
        )


_services: Services | None = None


def init_services(settings: Settings | None = None) -> Services:
    global _services
    s = settings or Settings.from_env()
    db = init_db(s)
    provider = get_provider(s.embeddings_provider, s.embedding_model, timeout=s.embedding_timeout)
    _services = Services.build(s, db, provider)
    return _services


def get_services() -> Services:
    assert _services is not None, "Services not initialized"
    return _services
