import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import NoCandidatesError, ProviderError, StoreError, ValidationError
from ..models import Chunk
from ..utils.text import excerpt
from .pipeline import Embedder
from .ranker import RankedItem, rank, vector_dim
from .store import DocumentStore

logger = logging.getLogger(__name__)

SYSTEM = (
    "You are a helpful assistant that answers questions using only the provided context from documents. "
    "Always cite your sources by mentioning the document names. "
    "If the context does not contain the information needed to answer, say so explicitly."
)

USER_TEMPLATE = """Context from documents:
{context}

Question: {query}"""

NO_CANDIDATES_ANSWER = (
    "No embedded content was found for the selected documents. "
    "Make sure the documents have finished embedding, then ask again."
)
FALLBACK_ANSWER = "I'm experiencing technical difficulties right now. Please try again later."


class Completer(Protocol):
    async def complete(self, system: str, user: str, max_tokens: Optional[int] = None,
                       temperature: Optional[float] = None) -> str: ...


@dataclass
class SourceRef:
    document_id: uuid.UUID
    document_name: str
    chunk_index: int
    similarity: float
    excerpt: str


@dataclass
class QueryResult:
    answer: str
    sources: List[SourceRef] = field(default_factory=list)
    context: str = ""
    error: Optional[str] = None


def parse_document_ids(raw_ids: Iterable) -> List[uuid.UUID]:
    """Keep well-formed UUIDs in input order, dropping duplicates and junk."""
    ids: List[uuid.UUID] = []
    for raw in raw_ids:
        try:
            doc_id = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
        except ValueError:
            logger.warning("Ignoring malformed document id %r", raw)
            continue
        if doc_id not in ids:
            ids.append(doc_id)
    return ids


def build_context(results: List[RankedItem[Tuple[Chunk, str]]]) -> str:
    return "\n\n".join(f"[{name}] {chunk.content}" for (chunk, name) in (r.item for r in results))


async def answer(
    session: AsyncSession,
    embedder: Embedder,
    completer: Completer,
    query: str,
    top_k: int,
    document_ids: Iterable,
) -> QueryResult:
    """Answer ``query`` from the chunks of ``document_ids``.

    Raises ``ValidationError`` for bad input. Missing content and provider or
    store failures come back as a ``QueryResult`` with ``error`` set and a
    user-facing ``answer``; the underlying error is only logged.
    """
    if not query or not query.strip():
        raise ValidationError("Query is required")
    if top_k < 1:
        raise ValidationError(f"topK must be at least 1, got {top_k}")
    requested = list(document_ids or [])
    if not requested:
        raise ValidationError("documentIds must not be empty")

    logger.info("Processing RAG query: %r (topK=%d, %d documents)", query, top_k, len(requested))
    store = DocumentStore(session)
    try:
        parsed = parse_document_ids(requested)
        existing = await store.existing_ids(parsed)
        doc_ids = [d for d in parsed if d in existing]
        if len(doc_ids) < len(requested):
            logger.warning("Filtered %d unknown document ids", len(requested) - len(doc_ids))
        if not doc_ids:
            raise NoCandidatesError("none of the requested documents exist")

        candidates = await store.load_candidates(doc_ids)
        if not candidates:
            raise NoCandidatesError("no embedded chunks for the requested documents")
        logger.info("Found %d chunks to search", len(candidates))

        query_vector = await embedder.embed(query)
        stored_dims = {vector_dim(chunk.embedding) for chunk, _ in candidates}
        if vector_dim(query_vector) not in stored_dims:
            raise ProviderError(f"Query embedding has dimension {vector_dim(query_vector)}, "
                                f"stored chunks have {sorted(stored_dims)}")
        ranked = rank(query_vector, [((chunk, name), chunk.embedding) for chunk, name in candidates], top_k)
        ranked = [r for r in ranked if not r.degenerate]
        if not ranked:
            raise NoCandidatesError("no chunk has a usable embedding")
        logger.info("Top %d results with similarities: %s", len(ranked), [round(r.score, 4) for r in ranked])

        context = build_context(ranked)
        text = await completer.complete(
            SYSTEM,
            USER_TEMPLATE.format(context=context, query=query),
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )
    except NoCandidatesError as e:
        logger.info("No candidates for query %r: %s", query, e)
        return QueryResult(answer=NO_CANDIDATES_ANSWER, error="no_candidates")
    except ProviderError as e:
        logger.error("Provider failure during RAG query %r: %s", query, e)
        return QueryResult(answer=FALLBACK_ANSWER, error="provider_error")
    except StoreError as e:
        logger.error("Store failure during RAG query %r: %s", query, e)
        return QueryResult(answer=FALLBACK_ANSWER, error="store_error")

    sources = [
        SourceRef(
            document_id=chunk.document_id,
            document_name=name,
            chunk_index=chunk.chunk_index,
            similarity=r.score,
            excerpt=excerpt(chunk.content, settings.EXCERPT_CHARS),
        )
        for r in ranked
        for chunk, name in [r.item]
    ]
    return QueryResult(
        answer=text.strip(),
        sources=sources,
        context=excerpt(context, settings.CONTEXT_PREVIEW_CHARS),
    )
