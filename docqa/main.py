from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .db import dispose_engine, init_models
from .logging_setup import configure_logging
from .routers import documents, query

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_models()
    yield
    await dispose_engine()

app = FastAPI(title="DocQA RAG", version="0.2.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware,
    allow_origins=[o.strip() for o in settings.ALLOWED_ORIGINS.split(",")],
    allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

@app.get("/health")
async def health(): return {"status": "ok"}

app.include_router(documents.router, prefix="/v1")
app.include_router(query.router, prefix="/v1")
