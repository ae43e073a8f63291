from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from .config import settings

# Lazy initialization - the engine is created on first use
_engine: AsyncEngine | None = None
_SessionLocal: async_sessionmaker[AsyncSession] | None = None

def get_engine() -> AsyncEngine:
    """Return the engine, creating it when needed."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
    return _engine

def get_session_local() -> async_sessionmaker[AsyncSession]:
    """Return the session factory, creating it when needed."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _SessionLocal

async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    SessionLocal = get_session_local()
    async with SessionLocal() as session:
        yield session

async def init_models() -> None:
    from . import models  # noqa: F401  registers tables on Base.metadata
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None

class Base(DeclarativeBase):
    pass
