import logging
from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from ..db import get_session
from ..errors import (
    DocumentNotFoundError,
    EmbeddingError,
    EmbeddingInProgressError,
    StoreError,
    ValidationError,
)
from ..schemas import (
    DeleteResponse,
    DocumentOut,
    DocumentOutcomeOut,
    EmbedDocumentRequest,
    EmbedDocumentResponse,
    EmbedParams,
    EmbedReportOut,
    PipelineStats,
    ResetResponse,
)
from ..services.embedding import EmbeddingProvider, get_embedder
from ..services.extract import TextExtractor, get_extractor
from ..services.pipeline import embed_all_pending, embed_document, reset_all
from ..services.store import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])

STORE_UNAVAILABLE = "The document store is temporarily unavailable. Please try again later."

def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, DocumentNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, EmbeddingInProgressError):
        return HTTPException(409, str(e))
    if isinstance(e, ValidationError):
        return HTTPException(400, str(e))
    return HTTPException(503, STORE_UNAVAILABLE)

@router.post("/documents/upload", response_model=DocumentOut, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    extractor: TextExtractor = Depends(get_extractor),
):
    content_bytes = await file.read()
    try:
        text = await extractor.extract(file.filename, content_bytes)
    except ValidationError as e:
        raise _to_http(e)
    if not text or len(text.strip()) == 0:
        raise HTTPException(400, "Empty text after extraction")

    try:
        doc = await DocumentStore(session).create_document(
            name=file.filename or "untitled",
            content=text,
            size=len(content_bytes),
            media_type=file.content_type or "text/plain",
        )
    except StoreError as e:
        raise _to_http(e)
    logger.info("Uploaded document %s (%s, %d chars)", doc.id, doc.name, len(text))
    return DocumentOut.model_validate(doc)

@router.get("/documents", response_model=List[DocumentOut])
async def list_documents(session: AsyncSession = Depends(get_session)):
    try:
        docs = await DocumentStore(session).list_documents()
    except StoreError as e:
        raise _to_http(e)
    return [DocumentOut.model_validate(d) for d in docs]

@router.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(document_id: UUID, session: AsyncSession = Depends(get_session)):
    """Embedding progress is polled here."""
    try:
        doc = await DocumentStore(session).get_document(document_id)
    except StoreError as e:
        raise _to_http(e)
    if doc is None:
        raise HTTPException(404, f"Document {document_id} not found")
    return DocumentOut.model_validate(doc)

@router.post("/embed-document", response_model=EmbedDocumentResponse)
async def embed_document_endpoint(
    req: EmbedDocumentRequest,
    session: AsyncSession = Depends(get_session),
    embedder: EmbeddingProvider = Depends(get_embedder),
):
    try:
        result = await embed_document(session, embedder, req.document_id, req.content, req.chunk_size, req.overlap)
    except EmbeddingError as e:
        payload = EmbedDocumentResponse(
            success=False,
            message="Embedding failed because the embedding service is unavailable. The document can be retried.",
            chunk_index=e.chunk_index,
        )
        return JSONResponse(status_code=502, content=payload.model_dump(by_alias=True))
    except (ValidationError, StoreError) as e:
        raise _to_http(e)
    return EmbedDocumentResponse(success=True, chunks=result.chunk_count, message="Document embedded successfully")

@router.post("/documents/embed-pending", response_model=EmbedReportOut)
async def embed_pending(
    params: EmbedParams,
    session: AsyncSession = Depends(get_session),
    embedder: EmbeddingProvider = Depends(get_embedder),
):
    try:
        report = await embed_all_pending(session, embedder, params.chunk_size, params.overlap)
    except (ValidationError, StoreError) as e:
        raise _to_http(e)
    return EmbedReportOut(
        processed=len(report.outcomes),
        succeeded=report.succeeded,
        failed=report.failed,
        results=[
            DocumentOutcomeOut(
                document_id=o.document_id, name=o.name, success=o.success,
                chunk_count=o.chunk_count, error=o.error,
            )
            for o in report.outcomes
        ],
    )

@router.post("/documents/reset", response_model=ResetResponse)
async def reset_embeddings(session: AsyncSession = Depends(get_session)):
    try:
        count = await reset_all(session)
    except StoreError as e:
        raise _to_http(e)
    return ResetResponse(reset=count, message=f"Cleared existing chunks; {count} documents are pending")

@router.delete("/documents", response_model=DeleteResponse)
async def delete_documents(session: AsyncSession = Depends(get_session)):
    try:
        count = await DocumentStore(session).delete_all()
    except StoreError as e:
        raise _to_http(e)
    logger.info("Deleted %d documents", count)
    return DeleteResponse(deleted=count)

@router.get("/diagnostics", response_model=PipelineStats)
async def diagnostics(session: AsyncSession = Depends(get_session)):
    try:
        stats = await DocumentStore(session).stats()
    except StoreError as e:
        raise _to_http(e)
    return PipelineStats(**stats)
