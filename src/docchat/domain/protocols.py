"""Domain service interfaces (ports).

These protocols define the contracts that infrastructure implementations
must satisfy.  The application layer depends on these abstractions,
not on concrete classes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from docchat.domain.models import ChatTurn, PromptMessage, ScoredNeighbor

# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@runtime_checkable
class IEmbeddingService(Protocol):
    """Interface for query embedding.

    Implementations: OpenAIEmbeddingService (Azure OpenAI deployment).
    """

    async def embed_query(self, text: str) -> list[float]: ...

    @property
    def dimension(self) -> int: ...


@runtime_checkable
class ScoredNeighborLookup(Protocol):
    """Namespace-scoped nearest-neighbour lookup over a vector index.

    Implementations: SqliteVecIndex (sqlite-vec ``vec0`` table).
    Results are ordered by descending score and never cross namespaces.
    """

    def query(self, namespace: str, vector: list[float], k: int) -> list[ScoredNeighbor]: ...


# ---------------------------------------------------------------------------
# Model inference
# ---------------------------------------------------------------------------


@runtime_checkable
class StreamingModelClient(Protocol):
    """Interface for streaming chat completion.

    Implementations: PydanticAIModelClient.
    The returned iterator is finite and not restartable.
    """

    def stream(self, messages: list[PromptMessage]) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@runtime_checkable
class TurnRepository(Protocol):
    """The slice of chat persistence the streaming pipeline needs.

    Implementations: ChatHistoryService (SQLite-backed).
    """

    def create_turns(self, project_id: str, turns: list[ChatTurn]) -> None: ...

    def find_recent_turns(self, project_id: str, limit: int) -> list[ChatTurn]: ...


@runtime_checkable
class ProjectOwnership(Protocol):
    """Answers whether a caller owns a project."""

    def is_project_owner(self, project_id: str, user_id: str) -> bool: ...
