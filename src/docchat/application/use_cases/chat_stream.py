"""Chat stream use case: orchestrates one retrieval-augmented streaming turn.

This module owns the request lifecycle from validation to the terminal
event: retrieval, relevance filtering, prompt composition, model
streaming, and best-effort persistence.  It has **no dependency on
FastAPI**; the transport only has to forward the yielded events.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from enum import StrEnum

from loguru import logger

from docchat.application.exceptions import (
    AuthorizationError,
    ModelUnavailable,
    RetrievalUnavailable,
    ValidationError,
)
from docchat.application.prompt import DEFAULT_HISTORY_WINDOW, SYSTEM_GUIDELINE, compose
from docchat.application.retrieval import (
    DEFAULT_RETRIEVAL_K,
    DEFAULT_SIMILARITY_THRESHOLD,
    VectorRetriever,
    filter_relevant,
    project_namespace,
)
from docchat.domain.models import (
    ChatTurn,
    DoneEvent,
    ErrorEvent,
    RetrievedPassage,
    SessionRequest,
    SourcesEvent,
    StreamEvent,
    TextEvent,
    utcnow,
)
from docchat.domain.protocols import ProjectOwnership, StreamingModelClient, TurnRepository

GENERIC_STREAM_ERROR = "An error occurred while processing your message"


class StreamState(StrEnum):
    VALIDATING = "validating"
    RETRIEVING = "retrieving"
    FILTERING = "filtering"
    COMPOSING = "composing"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    TERMINATED = "terminated"


def turn_ids(session_id: str) -> tuple[str, str]:
    """Return the persisted ``(user, assistant)`` turn ids for a session."""
    return f"{session_id}-user", f"{session_id}-assistant"


class SessionStreamController:
    """Drives one chat request from retrieval to the terminal stream event.

    Parameters
    ----------
    retriever:
        Namespaced vector retriever.
    model_client:
        Streaming chat-completion client.
    turns:
        Persistence for conversation history and finished exchanges.
    projects:
        Ownership check used before the stream opens.
    """

    def __init__(
        self,
        retriever: VectorRetriever,
        model_client: StreamingModelClient,
        turns: TurnRepository,
        projects: ProjectOwnership,
        *,
        retrieval_k: int = DEFAULT_RETRIEVAL_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        system_guideline: str = SYSTEM_GUIDELINE,
    ) -> None:
        self.retriever = retriever
        self.model_client = model_client
        self.turns = turns
        self.projects = projects
        self.retrieval_k = retrieval_k
        self.similarity_threshold = similarity_threshold
        self.history_window = history_window
        self.system_guideline = system_guideline

    # ------------------------------------------------------------------
    # Pre-stream
    # ------------------------------------------------------------------

    def validate(self, request: SessionRequest) -> None:
        """Reject a request before any event is produced.

        This is the ``VALIDATING`` state; ``stream`` begins at ``RETRIEVING``
        and is only started once this returns.

        Raises:
            ValidationError: If the message or session id is blank.
            AuthorizationError: If the caller does not own the project.
        """
        if not request.message.strip():
            raise ValidationError("Message is required")
        if not request.session_id.strip():
            raise ValidationError("Session ID is required")
        if not self.projects.is_project_owner(request.project_id, request.user_id):
            raise AuthorizationError("Project not found or access denied")

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    async def stream(self, request: SessionRequest) -> AsyncIterator[StreamEvent]:
        """Run the pipeline and yield wire events.

        Yields ``sources``, then one ``text`` per model increment, then
        exactly one ``done`` or ``error``.  Cancellation (task cancellation
        or closing this generator) stops consumption of the model stream,
        yields nothing more, and skips persistence.
        """
        state = StreamState.RETRIEVING
        message = request.message.strip()
        t0 = time.perf_counter()

        try:
            try:
                scored = await self.retriever.retrieve(
                    message, project_namespace(request.project_id), self.retrieval_k
                )
            except RetrievalUnavailable as exc:
                state = StreamState.TERMINATED
                yield ErrorEvent(content=str(exc))
                return

            state = StreamState.FILTERING
            sources = filter_relevant(scored, self.similarity_threshold)

            state = StreamState.COMPOSING
            history = await self._load_history(request.project_id)
            messages = compose(
                self.system_guideline,
                request.context_style,
                sources,
                history,
                message,
                request.images,
                history_window=self.history_window,
            )
            logger.info(
                "Composed prompt | project={} candidates={} grounded={} history={}",
                request.project_id,
                len(scored),
                len(sources),
                len(history),
            )
            yield SourcesEvent.from_passages(sources)

            state = StreamState.STREAMING
            parts: list[str] = []
            try:
                async with aclosing(self.model_client.stream(messages)) as increments:
                    async for delta in increments:
                        parts.append(delta)
                        yield TextEvent(content=delta)
            except ModelUnavailable as exc:
                logger.warning(
                    "Model stream failed | project={} partial={} chars={}",
                    request.project_id,
                    exc.partial,
                    sum(len(p) for p in parts),
                )
                state = StreamState.TERMINATED
                yield ErrorEvent(content=str(exc))
                return

            state = StreamState.PERSISTING
            answer = "".join(parts)
            await self._persist(request, message, answer, sources)

            state = StreamState.TERMINATED
            logger.info(
                "Stream completed | project={} latency={}ms | sources={} | chars={}",
                request.project_id,
                int((time.perf_counter() - t0) * 1000),
                len(sources),
                len(answer),
            )
            yield DoneEvent()

        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Stream cancelled | project={} state={}", request.project_id, state)
            raise
        except Exception:
            logger.exception("Error in chat stream | project={} state={}", request.project_id, state)
            yield ErrorEvent(content=GENERIC_STREAM_ERROR)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load_history(self, project_id: str) -> list[ChatTurn]:
        """Recent live turns in chronological order."""
        recent = await asyncio.to_thread(
            self.turns.find_recent_turns, project_id, self.history_window
        )
        return list(reversed(recent))

    async def _persist(
        self,
        request: SessionRequest,
        message: str,
        answer: str,
        sources: list[RetrievedPassage],
    ) -> None:
        """Write the user/assistant pair; failures are logged, never raised."""
        user_id, assistant_id = turn_ids(request.session_id)
        finished_at = utcnow()
        turns = [
            ChatTurn(
                id=user_id,
                role="user",
                content=message,
                created_at=request.received_at,
                project_id=request.project_id,
                metadata={"images": list(request.images)} if request.images else {},
            ),
            ChatTurn(
                id=assistant_id,
                role="assistant",
                content=answer,
                created_at=finished_at,
                project_id=request.project_id,
                metadata={
                    "sources": [s.to_wire() for s in sources],
                    "timestamp": finished_at.isoformat(),
                },
            ),
        ]
        try:
            await asyncio.to_thread(self.turns.create_turns, request.project_id, turns)
        except Exception:
            # Never raises: the stream still ends with ``done``.
            logger.exception(
                "Failed to save messages | project={} session={}",
                request.project_id,
                request.session_id,
            )
