from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from uuid import UUID

from .config import settings

class CamelModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)

class DocumentOut(CamelModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    size: int
    media_type: str = Field(alias="type")
    status: str
    embedding_status: str = Field(alias="embeddingStatus")
    chunk_count: int = Field(alias="chunkCount")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

class EmbedDocumentRequest(CamelModel):
    document_id: UUID = Field(alias="documentId")
    content: Optional[str] = None
    chunk_size: int = Field(default=settings.CHUNK_SIZE, alias="chunkSize")
    overlap: int = settings.CHUNK_OVERLAP

class EmbedDocumentResponse(CamelModel):
    success: bool
    chunks: int = 0
    message: str
    chunk_index: Optional[int] = Field(default=None, alias="chunkIndex")

class EmbedParams(CamelModel):
    chunk_size: int = Field(default=settings.CHUNK_SIZE, alias="chunkSize")
    overlap: int = settings.CHUNK_OVERLAP

class DocumentOutcomeOut(CamelModel):
    document_id: UUID = Field(alias="documentId")
    name: str
    success: bool
    chunk_count: int = Field(default=0, alias="chunkCount")
    error: Optional[str] = None

class EmbedReportOut(CamelModel):
    processed: int
    succeeded: int
    failed: int
    results: List[DocumentOutcomeOut]

class ResetResponse(CamelModel):
    reset: int
    message: str

class DeleteResponse(CamelModel):
    deleted: int

class QueryRequest(CamelModel):
    query: str
    top_k: int = Field(default=settings.RAG_TOP_K, alias="topK")
    document_ids: List[str] = Field(default_factory=list, alias="documentIds")

class SourceOut(CamelModel):
    document_id: UUID = Field(alias="documentId")
    document_name: str = Field(alias="documentName")
    chunk_index: int = Field(alias="chunkIndex")
    similarity_score: float = Field(alias="similarityScore")
    excerpt: str

class QueryResponse(CamelModel):
    answer: str
    sources: List[SourceOut] = Field(default_factory=list)
    context: str = ""
    query: str
    error: Optional[str] = None

class PipelineStats(CamelModel):
    total_documents: int = Field(alias="totalDocuments")
    pending_documents: int = Field(alias="pendingDocuments")
    processing_documents: int = Field(alias="processingDocuments")
    completed_documents: int = Field(alias="completedDocuments")
    failed_documents: int = Field(alias="failedDocuments")
    total_characters: int = Field(alias="totalCharacters")
    total_chunks: int = Field(alias="totalChunks")
    avg_chunk_size: int = Field(alias="avgChunkSize")
