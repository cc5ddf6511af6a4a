"""FastAPI backend for document-grounded project chat.

This module is a thin **presentation layer**.  All business logic lives in
the ``application`` package so it can be tested and reused independently
of any HTTP framework; concrete adapters are wired in the lifespan and
shared through ``app.state``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from docchat.application.retrieval import VectorRetriever
from docchat.application.use_cases import SessionStreamController
from docchat.config import Settings, get_settings
from docchat.infrastructure.chat_history_service import ChatHistoryService
from docchat.infrastructure.embedding import OpenAIEmbeddingService
from docchat.infrastructure.model_client import PydanticAIModelClient
from docchat.infrastructure.vector_index import SqliteVecIndex
from docchat.logging_config import setup_logging
from docchat.presentation.routes import auth, chat, messages, projects
from docchat.telemetry import (
    SERVICE_VERSION,
    is_observability_active,
    setup_telemetry,
    shutdown_telemetry,
)

# Accounts that can log in when open registration is disabled.
SEED_USERS = [
    {"name": "Alice Smith", "email": "alice@example.com"},
    {"name": "Bob Jones", "email": "bob@example.com"},
]


# ---------------------------------------------------------------------------
# Lifespan: initialise shared resources once at startup
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Set up and tear down services around the application lifetime."""
    settings: Settings = app.state.settings
    settings.validate_runtime()

    index = SqliteVecIndex(db_path=settings.vector_db_path, embedding_dim=settings.embedding_dimensions)
    index.connect()

    embeddings = OpenAIEmbeddingService.from_settings(settings)
    retriever = VectorRetriever(embeddings, index)

    # Chat history lives in its own SQLite file
    history = ChatHistoryService(db_path=settings.chat_db_path)
    history.connect()
    history.seed_users(SEED_USERS)

    model_client = PydanticAIModelClient.from_settings(
        settings, instrument=is_observability_active(settings)
    )

    app.state.history = history
    app.state.retriever = retriever
    app.state.stream_controller = SessionStreamController(
        retriever=retriever,
        model_client=model_client,
        turns=history,
        projects=history,
        retrieval_k=settings.retrieval_k,
        similarity_threshold=settings.similarity_threshold,
        history_window=settings.history_window,
    )

    logger.info("Application startup complete")
    yield

    await embeddings.close()
    history.close()
    index.close()
    shutdown_telemetry(app)
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app; services are attached to ``app.state`` at startup."""
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, json=settings.log_json)

    app = FastAPI(
        title="DocChat",
        description="Streaming chat grounded in each project's documents.",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router)
    app.include_router(auth.router)
    app.include_router(projects.router)
    app.include_router(messages.router)

    # Instrument FastAPI with observability (no-op when OBSERVABILITY=off)
    setup_telemetry(app, settings)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def run() -> None:
    import uvicorn

    uvicorn.run("docchat.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
