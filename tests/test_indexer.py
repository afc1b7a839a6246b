"""Tests for document embedding reindexing."""

from unittest.mock import patch

import pytest

from conftest import FakeProvider
from linkvault.core.content import BookmarkContent
from linkvault.core.errors import Forbidden, NotFound, ProviderError, StoreError, ValidationError
from linkvault.core.indexer import DocumentEmbeddingIndexer


def _bookmark(db, user_id="alice", **fields):
    fields.setdefault("url", "https://example.com/rust")
    fields.setdefault("title", "Rust Ownership")
    return db.create_bookmark(user_id=user_id, **fields)


@pytest.mark.asyncio
async def test_first_reindex_embeds(db, provider):
    bookmark_id = _bookmark(db, notes="borrow checker")
    db.set_tags(bookmark_id, "alice", ["systems", "rust"])

    result = await DocumentEmbeddingIndexer(db, provider).reindex(bookmark_id, "alice")

    assert result.ok is True
    assert result.skipped is False
    stored = db.get_document_embedding(bookmark_id)
    assert stored["semantic_source_hash"] == result.semantic_source_hash
    assert stored["embedding_model"] == "fake-embed-4"
    assert stored["content_for_embedding"] == "Rust Ownership\nborrow checker\nrust, systems"
    assert provider.calls == [stored["content_for_embedding"]]


@pytest.mark.asyncio
async def test_unchanged_content_is_skipped(db, provider):
    bookmark_id = _bookmark(db)
    indexer = DocumentEmbeddingIndexer(db, provider)

    first = await indexer.reindex(bookmark_id, "alice")
    before = db.get_document_embedding(bookmark_id)
    second = await indexer.reindex(bookmark_id, "alice")

    assert second.skipped is True
    assert second.semantic_source_hash == first.semantic_source_hash
    assert len(provider.calls) == 1
    assert db.get_document_embedding(bookmark_id) == before


@pytest.mark.asyncio
async def test_changed_notes_reembed(db, provider):
    bookmark_id = _bookmark(db)
    indexer = DocumentEmbeddingIndexer(db, provider)
    first = await indexer.reindex(bookmark_id, "alice")

    db.update_bookmark(bookmark_id, notes="ownership ownership")
    second = await indexer.reindex(bookmark_id, "alice")

    assert second.skipped is False
    assert second.semantic_source_hash != first.semantic_source_hash
    stored = db.get_document_embedding(bookmark_id)
    assert stored["semantic_source_hash"] == second.semantic_source_hash
    assert stored["embedding"] == "[2.0,4.0,1.0,1.0]"
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_tag_order_does_not_trigger_reembed(db, provider):
    bookmark_id = _bookmark(db)
    indexer = DocumentEmbeddingIndexer(db, provider)

    await indexer.reindex(bookmark_id, "alice", BookmarkContent(title="Rust", tags=("a", "b")))
    result = await indexer.reindex(bookmark_id, "alice", BookmarkContent(title="Rust", tags=("b", "a")))

    assert result.skipped is True
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_missing_bookmark(db, provider):
    with pytest.raises(NotFound):
        await DocumentEmbeddingIndexer(db, provider).reindex(404, "alice")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_other_owner_is_forbidden(db, provider):
    bookmark_id = _bookmark(db, user_id="bob")
    with pytest.raises(Forbidden):
        await DocumentEmbeddingIndexer(db, provider).reindex(bookmark_id, "alice")
    assert provider.calls == []
    assert db.get_document_embedding(bookmark_id) is None


@pytest.mark.asyncio
async def test_nothing_to_embed(db, provider):
    bookmark_id = db.create_bookmark(user_id="alice", url="https://example.com")
    with pytest.raises(ValidationError):
        await DocumentEmbeddingIndexer(db, provider).reindex(bookmark_id, "alice")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_provider_failure_leaves_previous_embedding(db, provider):
    bookmark_id = _bookmark(db)
    await DocumentEmbeddingIndexer(db, provider).reindex(bookmark_id, "alice")
    before = db.get_document_embedding(bookmark_id)

    db.update_bookmark(bookmark_id, notes="new notes")
    with pytest.raises(ProviderError):
        await DocumentEmbeddingIndexer(db, FakeProvider(fail=True)).reindex(bookmark_id, "alice")

    assert db.get_document_embedding(bookmark_id) == before


@pytest.mark.asyncio
async def test_store_failure_writes_nothing(db, provider):
    bookmark_id = _bookmark(db)
    indexer = DocumentEmbeddingIndexer(db, provider)

    with patch.object(db, "upsert_document_embedding", side_effect=StoreError("disk full")):
        with pytest.raises(StoreError):
            await indexer.reindex(bookmark_id, "alice")

    assert db.get_document_embedding(bookmark_id) is None


@pytest.mark.asyncio
async def test_content_is_truncated(db, provider):
    bookmark_id = _bookmark(db, content_text="word " * 100)
    await DocumentEmbeddingIndexer(db, provider, max_embed_chars=50).reindex(bookmark_id, "alice")

    stored = db.get_document_embedding(bookmark_id)
    assert len(stored["content_for_embedding"]) <= 53
    assert stored["content_for_embedding"].endswith("...")


@pytest.mark.asyncio
async def test_reindex_pending_is_scoped_to_owner(db, provider):
    embedded = _bookmark(db)
    await DocumentEmbeddingIndexer(db, provider).reindex(embedded, "alice")
    _bookmark(db, title="Python tips")
    db.create_bookmark(user_id="alice", url="https://example.com/empty")
    _bookmark(db, user_id="bob", title="Cooking")

    indexer = DocumentEmbeddingIndexer(db, provider)
    stats = await indexer.reindex_pending(owner_id="alice")

    # The empty bookmark has nothing to embed and bob's are not counted
    assert stats == {"processed": 1, "skipped": 0, "failed": 0, "remaining": 0}
    assert db.get_bookmarks_without_embedding(user_id="bob") != []


@pytest.mark.asyncio
async def test_reindex_pending_gets_past_empty_bookmarks(db, provider):
    for i in range(3):
        db.create_bookmark(user_id="alice", url=f"https://example.com/empty/{i}")
    titled = _bookmark(db, title="Rust Ownership")

    stats = await DocumentEmbeddingIndexer(db, provider).reindex_pending(limit=3, owner_id="alice")

    assert stats == {"processed": 1, "skipped": 0, "failed": 0, "remaining": 0}
    assert db.get_document_embedding(titled) is not None


@pytest.mark.asyncio
async def test_model_change_reembeds(db):
    bookmark_id = _bookmark(db)
    await DocumentEmbeddingIndexer(db, FakeProvider(model="old-model")).reindex(bookmark_id, "alice")

    new_provider = FakeProvider(model="new-model")
    indexer = DocumentEmbeddingIndexer(db, new_provider)
    result = await indexer.reindex(bookmark_id, "alice")

    assert result.skipped is False
    assert db.get_document_embedding(bookmark_id)["embedding_model"] == "new-model"
    assert (await indexer.reindex(bookmark_id, "alice")).skipped is True
    assert len(new_provider.calls) == 1


@pytest.mark.asyncio
async def test_reindex_pending_picks_up_other_model_embeddings(db):
    bookmark_id = _bookmark(db)
    await DocumentEmbeddingIndexer(db, FakeProvider(model="old-model")).reindex(bookmark_id, "alice")

    stats = await DocumentEmbeddingIndexer(db, FakeProvider(model="new-model")).reindex_pending()

    assert stats == {"processed": 1, "skipped": 0, "failed": 0, "remaining": 0}
    assert db.get_document_embedding(bookmark_id)["embedding_model"] == "new-model"
