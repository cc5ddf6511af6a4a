"""Shared fixtures and test doubles."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from docchat.application.exceptions import ModelUnavailable, PersistenceFailure
from docchat.application.retrieval import VectorRetriever
from docchat.config import Settings
from docchat.domain.models import ChatTurn, PromptMessage, ScoredNeighbor
from docchat.infrastructure.chat_history_service import ChatHistoryService


def pytest_configure(config):
    """Set pytest-asyncio mode to auto so async test functions work without markers."""
    config.option.asyncio_mode = "auto"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeEmbeddingService:
    """Returns a fixed vector, or raises when ``error`` is set."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.queries: list[str] = []

    @property
    def dimension(self) -> int:
        return 3

    async def embed_query(self, text: str) -> list[float]:
        self.queries.append(text)
        if self.error:
            raise self.error
        return [0.1, 0.2, 0.3]


class FakeNeighborLookup:
    """Serves canned neighbours per namespace."""

    def __init__(self, by_namespace: dict[str, list[ScoredNeighbor]] | None = None) -> None:
        self.by_namespace = by_namespace or {}
        self.calls: list[tuple[str, int]] = []

    def query(self, namespace: str, vector: list[float], k: int) -> list[ScoredNeighbor]:
        self.calls.append((namespace, k))
        return list(self.by_namespace.get(namespace, []))[:k]


class FakeModelClient:
    """Yields canned increments.

    ``fail_after`` raises ``ModelUnavailable`` once that many increments have
    been yielded.  ``gate`` (an ``asyncio.Event``) blocks before the first
    increment until set.
    """

    def __init__(
        self,
        increments: list[str] | None = None,
        *,
        fail_after: int | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.increments = increments if increments is not None else ["Hel", "lo"]
        self.fail_after = fail_after
        self.gate = gate
        self.calls: list[list[PromptMessage]] = []
        self.pulled = 0
        self.closed = False

    async def stream(self, messages: list[PromptMessage]) -> AsyncIterator[str]:
        self.calls.append(messages)
        try:
            if self.gate is not None:
                await self.gate.wait()
            for i, delta in enumerate(self.increments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise ModelUnavailable("The response was interrupted by a model error", partial=i > 0)
                self.pulled += 1
                yield delta
            if self.fail_after is not None and self.fail_after >= len(self.increments):
                raise ModelUnavailable("The language model is unavailable")
        finally:
            self.closed = True


class RecordingTurnRepository:
    """In-memory turns and ownership; records every write."""

    def __init__(self, owners: dict[str, str] | None = None, *, fail: bool = False) -> None:
        self.owners = owners or {}
        self.fail = fail
        self.turns: list[ChatTurn] = []
        self.create_calls: list[tuple[str, list[ChatTurn]]] = []

    def is_project_owner(self, project_id: str, user_id: str) -> bool:
        return self.owners.get(project_id) == user_id

    def create_turns(self, project_id: str, turns: list[ChatTurn]) -> None:
        self.create_calls.append((project_id, turns))
        if self.fail:
            raise PersistenceFailure("disk full")
        self.turns.extend(turns)

    def find_recent_turns(self, project_id: str, limit: int) -> list[ChatTurn]:
        live = [t for t in self.turns if t.project_id == project_id and not t.is_deleted]
        return list(reversed(live))[:limit]


def neighbor(chunk_id: str, score: float, text: str, name: str = "policy.pdf") -> ScoredNeighbor:
    return ScoredNeighbor(id=chunk_id, score=score, text=text, metadata={"documentName": name})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def history_service(tmp_path: Path) -> ChatHistoryService:
    """A ChatHistoryService connected to a temp database."""
    svc = ChatHistoryService(db_path=tmp_path / "chat_history.sqlite")
    svc.connect()
    yield svc
    svc.close()


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    """Settings that never read the real .env; auth disabled."""
    return Settings(
        _env_file=None,
        azure_openai_api_key="test-key",
        azure_openai_endpoint="https://test.openai.azure.com/",
        vector_db_path=tmp_path / "vectors.sqlite",
        chat_db_path=tmp_path / "chat_history.sqlite",
        auth_enabled=False,
    )


@pytest.fixture()
def make_retriever():
    def _make(by_namespace: dict[str, list[ScoredNeighbor]] | None = None, error: Exception | None = None):
        return VectorRetriever(FakeEmbeddingService(error=error), FakeNeighborLookup(by_namespace))

    return _make
