"""Document and chunk persistence over an async SQLAlchemy session.

Every write commits before returning, so a pipeline run moves its document
through visible status transitions. Database errors surface as ``StoreError``.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DocumentNotFoundError, EmbeddingInProgressError, StoreError
from ..models import (
    EMBED_COMPLETED,
    EMBED_FAILED,
    EMBED_PENDING,
    EMBED_PROCESSING,
    EMBEDDING_STATUSES,
    Chunk,
    Document,
)

logger = logging.getLogger(__name__)


class DocumentStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _op(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("Store operation '%s' failed: %s", action, e)
            await self.session.rollback()
            raise StoreError(f"{action} failed") from e

    async def create_document(self, name: str, content: str, size: Optional[int] = None,
                              media_type: str = "text/plain") -> Document:
        doc = Document(
            name=name,
            content=content,
            size=len(content.encode("utf-8")) if size is None else size,
            media_type=media_type,
        )
        async with self._op("create document"):
            self.session.add(doc)
            await self.session.commit()
            await self.session.refresh(doc)
        return doc

    async def get_document(self, document_id: uuid.UUID) -> Optional[Document]:
        async with self._op("get document"):
            return await self.session.get(Document, document_id, populate_existing=True)

    async def list_documents(self, embedding_status: Optional[str] = None) -> List[Document]:
        stmt = select(Document).order_by(Document.created_at, Document.name)
        if embedding_status is not None:
            stmt = stmt.where(Document.embedding_status == embedding_status)
        async with self._op("list documents"):
            res = await self.session.execute(stmt.execution_options(populate_existing=True))
            return list(res.scalars().all())

    async def existing_ids(self, document_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        ids = list(document_ids)
        if not ids:
            return set()
        async with self._op("resolve document ids"):
            res = await self.session.execute(select(Document.id).where(Document.id.in_(ids)))
            return set(res.scalars().all())

    async def claim_for_embedding(self, document_id: uuid.UUID) -> str:
        """Move a document to ``processing`` unless it is already there.

        The transition is a single conditional UPDATE, so two concurrent
        callers cannot both win. Returns the status the document had before.
        """
        doc = await self.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        previous = doc.embedding_status
        if previous == EMBED_PROCESSING:
            raise EmbeddingInProgressError(document_id)

        stmt = (
            update(Document)
            .where(Document.id == document_id, Document.embedding_status == previous)
            .values(embedding_status=EMBED_PROCESSING, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        async with self._op("claim document"):
            res = await self.session.execute(stmt)
            await self.session.commit()
        if res.rowcount != 1:
            # someone else moved it between our read and the update
            raise EmbeddingInProgressError(document_id)
        return previous

    async def set_embedding_status(self, document_id: uuid.UUID, status: str) -> None:
        if status not in EMBEDDING_STATUSES:
            raise ValueError(f"unknown embedding status: {status}")
        stmt = (
            update(Document)
            .where(Document.id == document_id)
            .values(embedding_status=status, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        async with self._op("update embedding status"):
            await self.session.execute(stmt)
            await self.session.commit()

    async def save_chunks(self, document_id: uuid.UUID,
                          chunks: Sequence[Tuple[str, List[float]]]) -> int:
        """Replace the document's chunks and mark it completed, in one transaction."""
        async with self._op("save chunks"):
            await self.session.execute(delete(Chunk).where(Chunk.document_id == document_id))
            self.session.add_all([
                Chunk(document_id=document_id, chunk_index=i, content=text, embedding=vector)
                for i, (text, vector) in enumerate(chunks)
            ])
            await self.session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(embedding_status=EMBED_COMPLETED, chunk_count=len(chunks), updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        return len(chunks)

    async def load_candidates(self, document_ids: Iterable[uuid.UUID]) -> List[Tuple[Chunk, str]]:
        """All chunks owned by the given documents, with the owning document name."""
        ids = list(document_ids)
        if not ids:
            return []
        stmt = (
            select(Chunk, Document.name)
            .join(Document, Chunk.document_id == Document.id)
            .where(Chunk.document_id.in_(ids))
            .order_by(Document.created_at, Document.name, Chunk.document_id, Chunk.chunk_index)
        )
        async with self._op("load chunks"):
            res = await self.session.execute(stmt)
            return [(chunk, name) for chunk, name in res.all()]

    async def reset_all(self) -> int:
        """Drop every chunk and put every document back to pending."""
        async with self._op("reset embeddings"):
            await self.session.execute(delete(Chunk))
            res = await self.session.execute(
                update(Document)
                .values(embedding_status=EMBED_PENDING, chunk_count=0, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        return res.rowcount

    async def delete_all(self) -> int:
        async with self._op("delete documents"):
            # explicit chunk delete; SQLite does not enforce ON DELETE CASCADE by default
            await self.session.execute(delete(Chunk))
            res = await self.session.execute(delete(Document).execution_options(synchronize_session=False))
            await self.session.commit()
        return res.rowcount

    async def stats(self) -> Dict[str, float]:
        async with self._op("collect stats"):
            by_status = dict((await self.session.execute(
                select(Document.embedding_status, func.count()).group_by(Document.embedding_status)
            )).all())
            total_chars = (await self.session.execute(
                select(func.coalesce(func.sum(func.length(Document.content)), 0))
            )).scalar_one()
            total_chunks, chunk_chars = (await self.session.execute(
                select(func.count(Chunk.id), func.coalesce(func.sum(func.length(Chunk.content)), 0))
            )).one()
        return {
            "totalDocuments": sum(by_status.values()),
            "pendingDocuments": by_status.get(EMBED_PENDING, 0),
            "processingDocuments": by_status.get(EMBED_PROCESSING, 0),
            "completedDocuments": by_status.get(EMBED_COMPLETED, 0),
            "failedDocuments": by_status.get(EMBED_FAILED, 0),
            "totalCharacters": int(total_chars),
            "totalChunks": int(total_chunks),
            "avgChunkSize": round(int(chunk_chars) / total_chunks) if total_chunks else 0,
        }
