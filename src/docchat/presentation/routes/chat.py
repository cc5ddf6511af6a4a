"""Chat routes: health, streaming chat, and direct document search."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from docchat.application.exceptions import (
    AuthorizationError,
    RetrievalUnavailable,
    ValidationError,
)
from docchat.application.retrieval import VectorRetriever, project_namespace
from docchat.application.use_cases import SessionStreamController
from docchat.domain.models import SessionRequest
from docchat.infrastructure.chat_history_service import ChatHistoryService
from docchat.presentation.auth import AuthenticatedUser, get_current_user
from docchat.presentation.routes.projects import require_owned_project
from docchat.presentation.schemas import ChatStreamRequest, QueryRequest, QueryResponse
from docchat.presentation.streaming import SSE_HEADERS, sse_frames

router = APIRouter(tags=["chat"])


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health")
async def health():
    """Simple liveness / readiness check."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Chat (streaming, Server-Sent Events)
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/chat/stream")
async def chat_stream(
    project_id: str,
    request: ChatStreamRequest,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Send a message and receive a grounded answer as an SSE stream.

    Each frame is ``data: <json>\\n\\n`` carrying one event:
    ``sources`` first, then ``text`` increments, then ``done`` or ``error``.
    Validation and ownership failures are plain HTTP errors and never
    open the stream.
    """
    controller: SessionStreamController = raw_request.app.state.stream_controller

    session = SessionRequest(
        project_id=project_id,
        user_id=current_user.user_id,
        message=request.message,
        session_id=request.session_id,
        context_style=request.context_style,
        images=tuple(request.images),
    )
    try:
        controller.validate(session)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc))

    logger.info(
        "POST /projects/{}/chat/stream | user={} session={} msg={}",
        project_id,
        current_user.user_id,
        request.session_id,
        request.message[:60],
    )

    return StreamingResponse(
        sse_frames(controller.stream(session)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ---------------------------------------------------------------------------
# Direct search
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/query", response_model=QueryResponse)
async def query_documents(
    project_id: str,
    request: QueryRequest,
    raw_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Search a project's documents without calling the language model.

    Returns every candidate with its score; no relevance threshold applies.
    """
    hist: ChatHistoryService = raw_request.app.state.history
    retriever: VectorRetriever = raw_request.app.state.retriever
    settings = raw_request.app.state.settings

    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")
    require_owned_project(hist, project_id, current_user.user_id)

    try:
        scored = await retriever.retrieve(query, project_namespace(project_id), settings.retrieval_k)
    except RetrievalUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    results = [p.model_copy(update={"score": score}).to_wire() for p, score in scored]
    logger.info("POST /projects/{}/query | user={} results={}", project_id, current_user.user_id, len(results))
    return QueryResponse(query=query, results=results, total_results=len(results))
