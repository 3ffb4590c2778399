"""forkchat FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forkchat.config import load_env_file, load_settings
from forkchat.conversations.router import get_conversation_service
from forkchat.conversations.router import router as conversations_router
from forkchat.conversations.service import ConversationService
from forkchat.providers.openai import OpenAICompletionClient
from forkchat.storage.sqlite import SqliteKeyValueStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage storage lifecycle and service wiring."""
    load_env_file()
    settings = load_settings()

    kv = await SqliteKeyValueStore.connect(settings.database_path)

    # The client re-reads settings per call, so key/model edits apply live
    service = ConversationService(kv, OpenAICompletionClient())
    app.dependency_overrides[get_conversation_service] = lambda: service

    yield

    await service.shutdown()
    await kv.close()


app = FastAPI(
    title="forkchat",
    description="Branching conversations with a language model",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}
