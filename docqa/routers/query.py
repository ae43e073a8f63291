from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..errors import ValidationError
from ..schemas import QueryRequest, QueryResponse, SourceOut
from ..services.embedding import EmbeddingProvider, get_embedder
from ..services.llm import ChatProvider, get_chat_provider
from ..services.rag import answer

router = APIRouter(tags=["query"])

# failures that still carry a fallback answer in the body
_ERROR_STATUS = {"provider_error": 502, "store_error": 503}

@router.post("/rag-query", response_model=QueryResponse)
async def rag_query(
    req: QueryRequest,
    session: AsyncSession = Depends(get_session),
    embedder: EmbeddingProvider = Depends(get_embedder),
    completer: ChatProvider = Depends(get_chat_provider),
):
    try:
        result = await answer(session, embedder, completer, req.query, req.top_k, req.document_ids)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    payload = QueryResponse(
        answer=result.answer,
        sources=[
            SourceOut(
                document_id=s.document_id,
                document_name=s.document_name,
                chunk_index=s.chunk_index,
                similarity_score=s.similarity,
                excerpt=s.excerpt,
            )
            for s in result.sources
        ],
        context=result.context,
        query=req.query,
        error=result.error,
    )
    if result.error in _ERROR_STATUS:
        return JSONResponse(status_code=_ERROR_STATUS[result.error],
                            content=payload.model_dump(mode="json", by_alias=True))
    return payload
