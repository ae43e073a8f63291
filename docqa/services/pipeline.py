"""Chunk -> embed -> store pipeline with per-document status tracking.

A run claims its document (``processing``), embeds chunks one at a time with a
fixed pause between provider calls, then writes all chunk rows and the
``completed`` status in one transaction. Any failure leaves the document in
``failed`` with no chunks from the run; cancellation puts it back to
``pending``.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import EmbeddingError, ProviderError, StoreError, ValidationError
from ..models import EMBED_FAILED, EMBED_PENDING
from ..utils.text import chunk_text, validate_chunk_params
from .store import DocumentStore

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str, model: Optional[str] = None) -> List[float]: ...


@dataclass
class EmbedResult:
    document_id: uuid.UUID
    chunk_count: int


@dataclass
class DocumentOutcome:
    document_id: uuid.UUID
    name: str
    success: bool
    chunk_count: int = 0
    error: Optional[str] = None


@dataclass
class EmbedReport:
    outcomes: List[DocumentOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded


async def _mark(store: DocumentStore, document_id: uuid.UUID, status: str) -> None:
    """Best-effort status write on an error path; the triggering error is re-raised."""
    try:
        await store.set_embedding_status(document_id, status)
    except StoreError:
        logger.exception("Could not set document %s to %s", document_id, status)


def _check_dimension(vector: List[float], expected: Optional[int]) -> None:
    if len(vector) == 0:
        raise ProviderError("Embedding provider returned an empty vector")
    if expected is not None and len(vector) != expected:
        raise ProviderError(f"Embedding dimension changed within the document: got {len(vector)}, expected {expected}")


async def embed_document(
    session: AsyncSession,
    embedder: Embedder,
    document_id: uuid.UUID,
    content: Optional[str] = None,
    chunk_size: int = 512,
    overlap: int = 50,
    *,
    delay: Optional[float] = None,
) -> EmbedResult:
    validate_chunk_params(chunk_size, overlap)
    delay = settings.EMBED_DELAY_SEC if delay is None else delay
    store = DocumentStore(session)

    previous = await store.claim_for_embedding(document_id)
    logger.info("Starting embedding process for document: %s", document_id)

    try:
        if content is None:
            doc = await store.get_document(document_id)
            content = doc.content if doc is not None else ""
        if not content or not content.strip():
            await store.set_embedding_status(document_id, previous)
            raise ValidationError(f"Document {document_id} has no content to embed")

        chunks = chunk_text(content, chunk_size, overlap)
        logger.info("Split document %s into %d chunks (size=%d, overlap=%d)",
                    document_id, len(chunks), chunk_size, overlap)

        rows = []
        for i, text in enumerate(chunks):
            try:
                vector = await embedder.embed(text)
                _check_dimension(vector, len(rows[0][1]) if rows else None)
            except ProviderError as e:
                logger.error("Embedding provider failed for document %s chunk %d: %s", document_id, i, e)
                await _mark(store, document_id, EMBED_FAILED)
                raise EmbeddingError(document_id, i, e) from e
            rows.append((text, vector))
            if i < len(chunks) - 1 and delay > 0:
                await asyncio.sleep(delay)

        await store.save_chunks(document_id, rows)
    except (EmbeddingError, ValidationError):
        raise
    except StoreError as e:
        await _mark(store, document_id, EMBED_FAILED)
        raise EmbeddingError(document_id, None, e) from e
    except asyncio.CancelledError:
        logger.warning("Embedding of document %s cancelled; returning it to pending", document_id)
        await session.rollback()
        await _mark(store, document_id, EMBED_PENDING)
        raise
    except Exception:
        logger.exception("Unexpected error while embedding document %s", document_id)
        await _mark(store, document_id, EMBED_FAILED)
        raise

    logger.info("Successfully embedded document %s (%d chunks)", document_id, len(rows))
    return EmbedResult(document_id=document_id, chunk_count=len(rows))


async def embed_all_pending(
    session: AsyncSession,
    embedder: Embedder,
    chunk_size: int = 512,
    overlap: int = 50,
    *,
    delay: Optional[float] = None,
    batch_delay: Optional[float] = None,
) -> EmbedReport:
    """Embed every pending document in turn; one failure does not stop the rest."""
    validate_chunk_params(chunk_size, overlap)
    batch_delay = settings.BATCH_DELAY_SEC if batch_delay is None else batch_delay
    store = DocumentStore(session)
    pending = await store.list_documents(embedding_status=EMBED_PENDING)
    report = EmbedReport()
    if not pending:
        logger.info("No pending documents to embed")
        return report

    logger.info("Starting embedding for %d documents", len(pending))
    # read everything up front; later commits must not reload these rows lazily
    jobs = [(doc.id, doc.name, doc.content) for doc in pending]
    for n, (doc_id, name, content) in enumerate(jobs):
        if not content or not content.strip():
            logger.warning("No content for document %s", name)
            report.outcomes.append(DocumentOutcome(doc_id, name, False, error="no content"))
        else:
            try:
                result = await embed_document(session, embedder, doc_id, content, chunk_size, overlap, delay=delay)
            except EmbeddingError as e:
                logger.error("Failed to embed %s: %s", name, e)
                report.outcomes.append(DocumentOutcome(doc_id, name, False, error="embedding failed"))
            except (ValidationError, StoreError) as e:
                logger.error("Failed to embed %s: %s", name, e)
                report.outcomes.append(DocumentOutcome(doc_id, name, False, error=str(e)))
            except Exception:
                logger.exception("Unexpected error while embedding %s", name)
                report.outcomes.append(DocumentOutcome(doc_id, name, False, error="unexpected error"))
            else:
                report.outcomes.append(DocumentOutcome(doc_id, name, True, chunk_count=result.chunk_count))
        if n < len(jobs) - 1 and batch_delay > 0:
            await asyncio.sleep(batch_delay)

    logger.info("Embedding pass finished: %d succeeded, %d failed", report.succeeded, report.failed)
    return report


async def reset_all(session: AsyncSession) -> int:
    """Clear all chunks and send every document back to pending."""
    count = await DocumentStore(session).reset_all()
    logger.info("Cleared existing chunks; %d documents reset to pending", count)
    return count
