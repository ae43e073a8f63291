"""Error kinds that may leave the embedding pipeline and the query orchestrator."""

from typing import Optional


class DocQAError(Exception):
    """Base class for all service errors."""


class ValidationError(DocQAError):
    """Malformed or missing input. Never retried."""


class DocumentNotFoundError(ValidationError):
    def __init__(self, document_id):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class EmbeddingInProgressError(ValidationError):
    def __init__(self, document_id):
        super().__init__(f"Document {document_id} is already being embedded")
        self.document_id = document_id


class ProviderError(DocQAError):
    """Embedding or chat-completion provider failure (non-2xx, timeout, rate limit)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"[{self.status}] {self.message}"


class LLMConfigurationError(ProviderError):
    """Provider is not configured (missing API key and so on)."""


class StoreError(DocQAError):
    """Persistence failure."""


class NoCandidatesError(DocQAError):
    """No embedded chunks exist for the requested documents."""


class EmbeddingError(DocQAError):
    """An embedding run for a document was aborted."""

    def __init__(self, document_id, chunk_index: Optional[int], cause: Exception):
        where = f"chunk {chunk_index}" if chunk_index is not None else "persist"
        super().__init__(f"Embedding failed for document {document_id} at {where}: {cause}")
        self.document_id = document_id
        self.chunk_index = chunk_index
        self.cause = cause
