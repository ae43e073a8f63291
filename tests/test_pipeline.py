"""
Test suite for the embedding pipeline.

Covers status transitions, all-or-nothing chunk writes, re-embedding,
cancellation and the pending-documents batch driver.
"""

import asyncio
import uuid

import pytest

from docqa.errors import (
    DocumentNotFoundError,
    EmbeddingError,
    EmbeddingInProgressError,
    ProviderError,
    StoreError,
    ValidationError,
)
from docqa.models import EMBED_COMPLETED, EMBED_FAILED, EMBED_PENDING, EMBED_PROCESSING
from docqa.services import pipeline
from docqa.services.pipeline import embed_all_pending, embed_document, reset_all
from docqa.services.store import DocumentStore

from conftest import BlockingEmbedder, FakeEmbedder, add_document


TEXT = "abcdefghij" * 5  # 50 chars -> 5 chunks of 10 with no overlap


async def test_embed_document_persists_indexed_chunks(session, store, embedder):
    doc = await add_document(store, "a.txt", TEXT)

    result = await embed_document(session, embedder, doc.id, TEXT, chunk_size=10, overlap=0, delay=0)

    assert result.chunk_count == 5
    rows = await store.load_candidates([doc.id])
    assert [c.chunk_index for c, _ in rows] == [0, 1, 2, 3, 4]
    assert "".join(c.content for c, _ in rows) == TEXT
    assert all(len(c.embedding) == 3 for c, _ in rows)
    fetched = await store.get_document(doc.id)
    assert fetched.embedding_status == EMBED_COMPLETED
    assert fetched.chunk_count == 5
    assert embedder.calls == [c.content for c, _ in rows]


async def test_embed_document_uses_stored_content_when_none_given(session, store, embedder):
    doc = await add_document(store, "a.txt", "stored content")

    result = await embed_document(session, embedder, doc.id, chunk_size=512, overlap=50, delay=0)

    assert result.chunk_count == 1
    assert embedder.calls == ["stored content"]


async def test_overlapping_chunks(session, store, embedder):
    doc = await add_document(store, "a.txt", "abcdefghij")

    result = await embed_document(session, embedder, doc.id, "abcdefghij", chunk_size=4, overlap=1, delay=0)

    assert result.chunk_count == 4
    assert embedder.calls == ["abcd", "defg", "ghij", "j"]


async def test_provider_failure_mid_run_marks_failed_and_writes_nothing(session, store):
    doc = await add_document(store, "a.txt", TEXT)
    embedder = FakeEmbedder(fail_on_calls={2})

    with pytest.raises(EmbeddingError) as exc_info:
        await embed_document(session, embedder, doc.id, TEXT, chunk_size=10, overlap=0, delay=0)

    assert exc_info.value.chunk_index == 2
    assert isinstance(exc_info.value.cause, ProviderError)
    assert len(embedder.calls) == 3
    fetched = await store.get_document(doc.id)
    assert fetched.embedding_status == EMBED_FAILED
    assert await store.load_candidates([doc.id]) == []


async def test_failed_document_can_be_retried(session, store):
    doc = await add_document(store, "a.txt", TEXT)
    with pytest.raises(EmbeddingError):
        await embed_document(session, FakeEmbedder(fail_on_calls={0}), doc.id, TEXT, 10, 0, delay=0)

    result = await embed_document(session, FakeEmbedder(), doc.id, TEXT, 10, 0, delay=0)

    assert result.chunk_count == 5
    assert (await store.get_document(doc.id)).embedding_status == EMBED_COMPLETED


async def test_store_failure_while_saving_marks_failed(session, store, embedder, monkeypatch):
    doc = await add_document(store, "a.txt", TEXT)

    async def broken_save(self, document_id, chunks):
        raise StoreError("save chunks failed")

    monkeypatch.setattr(DocumentStore, "save_chunks", broken_save)

    with pytest.raises(EmbeddingError) as exc_info:
        await embed_document(session, embedder, doc.id, TEXT, 10, 0, delay=0)

    assert exc_info.value.chunk_index is None
    assert (await store.get_document(doc.id)).embedding_status == EMBED_FAILED


async def test_reembedding_after_reset_gives_same_chunk_count(session, store, embedder):
    doc = await add_document(store, "a.txt", TEXT)
    first = await embed_document(session, embedder, doc.id, TEXT, 12, 3, delay=0)

    await reset_all(session)
    assert (await store.get_document(doc.id)).chunk_count == 0

    second = await embed_document(session, embedder, doc.id, TEXT, 12, 3, delay=0)
    assert second.chunk_count == first.chunk_count
    assert len(await store.load_candidates([doc.id])) == first.chunk_count


async def test_reembedding_completed_document_replaces_chunks(session, store, embedder):
    doc = await add_document(store, "a.txt", TEXT)
    await embed_document(session, embedder, doc.id, TEXT, 10, 0, delay=0)

    result = await embed_document(session, embedder, doc.id, TEXT, 25, 0, delay=0)

    assert result.chunk_count == 2
    rows = await store.load_candidates([doc.id])
    assert [c.chunk_index for c, _ in rows] == [0, 1]


async def test_document_already_processing_is_rejected(session, store, embedder):
    doc = await add_document(store, "a.txt", TEXT, embedding_status=EMBED_PROCESSING)

    with pytest.raises(EmbeddingInProgressError):
        await embed_document(session, embedder, doc.id, TEXT, 10, 0, delay=0)
    assert embedder.calls == []


async def test_missing_document_is_rejected(session, embedder):
    with pytest.raises(DocumentNotFoundError):
        await embed_document(session, embedder, uuid.uuid4(), TEXT, 10, 0, delay=0)


async def test_blank_content_is_rejected_and_status_restored(session, store, embedder):
    doc = await add_document(store, "a.txt", "   ")

    with pytest.raises(ValidationError):
        await embed_document(session, embedder, doc.id, None, 10, 0, delay=0)

    assert (await store.get_document(doc.id)).embedding_status == EMBED_PENDING


async def test_invalid_parameters_do_not_touch_document(session, store, embedder):
    doc = await add_document(store, "a.txt", TEXT)

    with pytest.raises(ValidationError):
        await embed_document(session, embedder, doc.id, TEXT, chunk_size=10, overlap=10)

    assert (await store.get_document(doc.id)).embedding_status == EMBED_PENDING


async def test_cancellation_returns_document_to_pending(session, store):
    doc = await add_document(store, "a.txt", TEXT)
    embedder = BlockingEmbedder()

    task = asyncio.create_task(embed_document(session, embedder, doc.id, TEXT, 10, 0, delay=0))
    await asyncio.wait_for(embedder.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    fetched = await store.get_document(doc.id)
    assert fetched.embedding_status == EMBED_PENDING
    assert await store.load_candidates([doc.id]) == []


async def test_delay_between_provider_calls(session, store, embedder, monkeypatch):
    doc = await add_document(store, "a.txt", TEXT)
    pauses = []
    real_sleep = asyncio.sleep

    async def recording_sleep(seconds):
        pauses.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr(pipeline.asyncio, "sleep", recording_sleep)

    await embed_document(session, embedder, doc.id, TEXT, 10, 0, delay=0.1)

    assert [p for p in pauses if p] == [0.1] * 4


async def test_embed_all_pending_reports_each_document(session, store):
    good = await add_document(store, "good.txt", "plain words here")
    bad = await add_document(store, "bad.txt", "this one is BROKEN")
    empty = await add_document(store, "empty.txt", "")
    done = await add_document(store, "done.txt", "already", embedding_status=EMBED_COMPLETED)
    embedder = FakeEmbedder(fail_on_text=["BROKEN"])

    report = await embed_all_pending(session, embedder, 512, 50, delay=0, batch_delay=0)

    by_id = {o.document_id: o for o in report.outcomes}
    assert set(by_id) == {good.id, bad.id, empty.id}
    assert by_id[good.id].success and by_id[good.id].chunk_count == 1
    assert not by_id[bad.id].success
    assert by_id[bad.id].error == "embedding failed"
    assert by_id[empty.id].error == "no content"
    assert report.succeeded == 1 and report.failed == 2

    assert (await store.get_document(good.id)).embedding_status == EMBED_COMPLETED
    assert (await store.get_document(bad.id)).embedding_status == EMBED_FAILED
    assert (await store.get_document(empty.id)).embedding_status == EMBED_PENDING
    assert (await store.get_document(done.id)).embedding_status == EMBED_COMPLETED


async def test_embed_all_pending_with_nothing_to_do(session, embedder):
    report = await embed_all_pending(session, embedder, 512, 50, delay=0, batch_delay=0)
    assert report.outcomes == []
    assert embedder.calls == []


class ShiftingEmbedder:
    """Returns a vector one element longer on every call."""

    def __init__(self):
        self.calls = 0

    async def embed(self, text, model=None):
        self.calls += 1
        return [1.0] * (self.calls + 1)


async def test_changing_vector_dimension_fails_document(session, store):
    doc = await add_document(store, "a.txt", TEXT)

    with pytest.raises(EmbeddingError) as exc_info:
        await embed_document(session, ShiftingEmbedder(), doc.id, TEXT, 10, 0, delay=0)

    assert exc_info.value.chunk_index == 1
    assert isinstance(exc_info.value.cause, ProviderError)
    assert (await store.get_document(doc.id)).embedding_status == EMBED_FAILED
    assert await store.load_candidates([doc.id]) == []


async def test_empty_vector_fails_document(session, store):
    doc = await add_document(store, "a.txt", "short")
    embedder = FakeEmbedder(vectors={"short": []})

    with pytest.raises(EmbeddingError) as exc_info:
        await embed_document(session, embedder, doc.id, None, 10, 0, delay=0)

    assert exc_info.value.chunk_index == 0
    assert (await store.get_document(doc.id)).embedding_status == EMBED_FAILED


class ExplodingEmbedder(FakeEmbedder):
    async def embed(self, text, model=None):
        if "explode" in text:
            raise RuntimeError("provider client bug")
        return await super().embed(text, model)


async def test_embed_all_pending_survives_unexpected_errors(session, store):
    broken = await add_document(store, "broken.txt", "explode here")
    fine = await add_document(store, "fine.txt", "plain words")

    report = await embed_all_pending(session, ExplodingEmbedder(), 512, 50, delay=0, batch_delay=0)

    by_id = {o.document_id: o for o in report.outcomes}
    assert not by_id[broken.id].success
    assert by_id[broken.id].error == "unexpected error"
    assert by_id[fine.id].success
    assert (await store.get_document(broken.id)).embedding_status == EMBED_FAILED
    assert (await store.get_document(fine.id)).embedding_status == EMBED_COMPLETED
