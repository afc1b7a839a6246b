"""Tests for the bookmark service and the reindex triggers it schedules."""

import pytest

from linkvault.core.bookmarks import BookmarkService
from linkvault.core.errors import Conflict, Forbidden, MetadataUnavailable, NotFound, ValidationError
from linkvault.core.indexer import DocumentEmbeddingIndexer
from linkvault.core.metadata import PageMetadata


class StubFetcher:
    def __init__(self, metadata=None):
        self.metadata = metadata
        self.urls = []

    async def fetch(self, url):
        self.urls.append(url)
        return self.metadata

    async def close(self):
        pass


@pytest.fixture
def fetcher():
    return StubFetcher(
        PageMetadata(
            title="Understanding Ownership",
            description="Memory without a GC",
            site_name="The Rust Book",
            content_text="Ownership is a set of rules.",
        )
    )


@pytest.fixture
def service(db, provider, tasks, fetcher):
    return BookmarkService(db, DocumentEmbeddingIndexer(db, provider), fetcher, tasks)


@pytest.mark.asyncio
async def test_save_url_refreshes_and_indexes(service, db, tasks, fetcher):
    bookmark = await service.save_url("alice", "https://doc.rust-lang.org/book/ch04")
    assert bookmark["tags"] == ["websites"]
    assert bookmark["url_canonical"] == "https://doc.rust-lang.org/book/ch04"

    await tasks.drain()

    stored = db.get_bookmark(bookmark["id"])
    assert stored["title"] == "Understanding Ownership"
    assert stored["content_text"] == "Ownership is a set of rules."
    embedding = db.get_document_embedding(bookmark["id"])
    assert embedding is not None
    assert "Understanding Ownership" in embedding["content_for_embedding"]
    assert fetcher.urls == ["https://doc.rust-lang.org/book/ch04"]


@pytest.mark.asyncio
async def test_save_url_without_metadata_still_indexes(db, provider, tasks):
    service = BookmarkService(db, DocumentEmbeddingIndexer(db, provider), StubFetcher(None), tasks)
    bookmark = await service.save_url("alice", "https://www.youtube.com/watch?v=abc")
    await tasks.drain()

    assert bookmark["tags"] == ["youtube"]
    # Only the type tag is embeddable
    assert db.get_document_embedding(bookmark["id"])["content_for_embedding"] == "youtube"


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "ftp://example.com", "javascript:alert(1)", "https://x.com/" + "a" * 2100])
async def test_save_url_rejects_invalid(service, url):
    with pytest.raises(ValidationError):
        await service.save_url("alice", url)


@pytest.mark.asyncio
async def test_save_note(service, db, tasks):
    bookmark = await service.save_note("alice", "Borrow checker\nremember lifetimes")
    await tasks.drain()

    assert bookmark["url"].startswith("note://")
    assert bookmark["title"] == "Borrow checker"
    assert bookmark["tags"] == ["snippets"]
    assert db.get_document_embedding(bookmark["id"]) is not None


@pytest.mark.asyncio
async def test_update_reindexes_semantic_changes(service, db, provider, tasks):
    bookmark = await service.save_note("alice", "Rust notes")
    await tasks.drain()
    first_hash = db.get_document_embedding(bookmark["id"])["semantic_source_hash"]

    updated = await service.update("alice", bookmark["id"], notes="ownership and borrowing", tags=["rust"])
    await tasks.drain()

    assert updated["notes"] == "ownership and borrowing"
    assert updated["tags"] == ["rust"]
    assert db.get_document_embedding(bookmark["id"])["semantic_source_hash"] != first_hash
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_archive_does_not_reindex(service, db, provider, tasks):
    bookmark = await service.save_note("alice", "Rust notes")
    await tasks.drain()

    updated = await service.update("alice", bookmark["id"], archived=True)
    await tasks.drain()

    assert updated["archived"] is True
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_ownership_checks(service):
    bookmark = await service.save_note("alice", "private")
    with pytest.raises(Forbidden):
        await service.update("bob", bookmark["id"], title="mine now")
    with pytest.raises(Forbidden):
        service.delete("bob", bookmark["id"])
    with pytest.raises(NotFound):
        service.delete("alice", 999)


@pytest.mark.asyncio
async def test_delete_removes_embedding(service, db, tasks):
    bookmark = await service.save_note("alice", "short lived")
    await tasks.drain()

    service.delete("alice", bookmark["id"])

    assert db.get_bookmark(bookmark["id"]) is None
    assert db.get_document_embedding(bookmark["id"]) is None


@pytest.mark.asyncio
async def test_refresh_rejects_notes(service):
    bookmark = await service.save_note("alice", "just text")
    with pytest.raises(ValidationError):
        await service.refresh_metadata("alice", bookmark["id"])


@pytest.mark.asyncio
async def test_refresh_keeps_content_text_when_none_extracted(db, provider, tasks):
    fetcher = StubFetcher(PageMetadata(title="New title"))
    service = BookmarkService(db, DocumentEmbeddingIndexer(db, provider), fetcher, tasks)
    bookmark_id = db.create_bookmark(
        user_id="alice", url="https://example.com/a", title="Old title", content_text="kept body"
    )

    refreshed = await service.refresh_metadata("alice", bookmark_id)
    await tasks.drain()

    assert refreshed["title"] == "New title"
    assert refreshed["content_text"] == "kept body"
    assert "kept body" in db.get_document_embedding(bookmark_id)["content_for_embedding"]


@pytest.mark.asyncio
async def test_refresh_unavailable(db, provider, tasks):
    service = BookmarkService(db, DocumentEmbeddingIndexer(db, provider), StubFetcher(None), tasks)
    bookmark_id = db.create_bookmark(user_id="alice", url="https://example.com/a")
    with pytest.raises(MetadataUnavailable):
        await service.refresh_metadata("alice", bookmark_id)


@pytest.mark.asyncio
async def test_save_url_with_notes(service, db, tasks):
    bookmark = await service.save_url("alice", "https://example.com/post", notes="  read later  ")
    await tasks.drain()

    assert bookmark["notes"] == "read later"
    assert "read later" in db.get_document_embedding(bookmark["id"])["content_for_embedding"]


@pytest.mark.asyncio
async def test_save_url_twice_conflicts(service, tasks):
    await service.save_url("alice", "https://www.example.com/post/")
    with pytest.raises(Conflict):
        await service.save_url("alice", "http://example.com/post?utm_source=x")
    # Another user may save the same page
    await service.save_url("bob", "https://example.com/post")
    await tasks.drain()
