"""
Shared test fixtures.

Provides: in-memory SQLite async session, fake embedding and chat providers,
document seeding helpers.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from docqa.db import Base
from docqa.errors import ProviderError
from docqa.models import EMBED_PENDING, Document
from docqa.services.store import DocumentStore


class FakeEmbedder:
    """Deterministic embedder.

    Looks the text up in ``vectors`` first, otherwise derives a small vector
    from the text. Raises ``ProviderError`` on the call numbers listed in
    ``fail_on_calls`` or for texts containing any of ``fail_on_text``.
    """

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None,
                 fail_on_calls: Iterable[int] = (), fail_on_text: Iterable[str] = ()):
        self.vectors = vectors or {}
        self.fail_on_calls = set(fail_on_calls)
        self.fail_on_text = list(fail_on_text)
        self.calls: List[str] = []

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        call_no = len(self.calls)
        self.calls.append(text)
        if call_no in self.fail_on_calls or any(t in text for t in self.fail_on_text):
            raise ProviderError("rate limit exceeded: upstream said no", status=429)
        if text in self.vectors:
            return list(self.vectors[text])
        return [float(len(text)), float(text.count("a")) + 1.0, float(sum(map(ord, text)) % 97)]


class BlockingEmbedder:
    """Blocks forever on the first call so the caller can be cancelled mid-run."""

    def __init__(self):
        self.started = asyncio.Event()

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        self.started.set()
        await asyncio.Event().wait()
        return []


class FakeCompleter:
    def __init__(self, reply: str = "Answer from [Doc A].", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[dict] = []

    async def complete(self, system: str, user: str, max_tokens: Optional[int] = None,
                       temperature: Optional[float] = None) -> str:
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
async def session():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
        await s.rollback()

    await engine.dispose()


@pytest.fixture
def store(session) -> DocumentStore:
    return DocumentStore(session)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def completer() -> FakeCompleter:
    return FakeCompleter()


async def add_document(store: DocumentStore, name: str, content: str = "",
                       embedding_status: str = EMBED_PENDING) -> Document:
    doc = await store.create_document(name=name, content=content)
    if embedding_status != EMBED_PENDING:
        await store.set_embedding_status(doc.id, embedding_status)
    return doc


async def add_embedded_document(store: DocumentStore, name: str,
                                chunks: List[tuple]) -> Document:
    """Create a completed document whose chunks are ``(text, vector)`` pairs."""
    doc = await store.create_document(name=name, content="".join(t for t, _ in chunks))
    await store.save_chunks(doc.id, chunks)
    return doc
