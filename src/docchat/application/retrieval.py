"""Project-scoped passage retrieval and the relevance threshold policy."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from loguru import logger

from docchat.application.exceptions import RetrievalUnavailable
from docchat.domain.models import RetrievedPassage
from docchat.domain.protocols import IEmbeddingService, ScoredNeighborLookup

# Minimum cosine similarity for a passage to ground the prompt.
DEFAULT_SIMILARITY_THRESHOLD = 0.75
DEFAULT_RETRIEVAL_K = 4


def project_namespace(project_id: str) -> str:
    """Return the vector-index namespace that holds one project's documents."""
    return f"project-{project_id}"


class VectorRetriever:
    """Embeds a query and runs a namespaced similarity search.

    Parameters
    ----------
    embedding_service:
        Produces the query vector.
    index:
        The scored nearest-neighbour lookup backing the vector store.
    """

    def __init__(self, embedding_service: IEmbeddingService, index: ScoredNeighborLookup) -> None:
        self.embedding_service = embedding_service
        self.index = index

    async def retrieve(
        self, query: str, namespace: str, k: int = DEFAULT_RETRIEVAL_K
    ) -> list[tuple[RetrievedPassage, float]]:
        """Return up to *k* ``(passage, score)`` pairs, best first.

        Raises:
            ValueError: If *query* is blank.
            RetrievalUnavailable: If the embedding service or the index fails.
        """
        if not query.strip():
            raise ValueError("query must not be empty")

        try:
            vector = await self.embedding_service.embed_query(query)
            neighbours = await asyncio.to_thread(self.index.query, namespace, vector, k)
        except Exception as exc:
            logger.exception("Retrieval failed | namespace={}", namespace)
            raise RetrievalUnavailable(
                f"Document retrieval is unavailable ({type(exc).__name__})"
            ) from exc

        neighbours = sorted(neighbours, key=lambda n: n.score, reverse=True)[:k]
        scored = [
            (
                RetrievedPassage(
                    id=f"src-{rank}",
                    name=n.metadata.get("documentName") or "Document",
                    page_content=n.text,
                    metadata=n.metadata,
                ),
                n.score,
            )
            for rank, n in enumerate(neighbours)
        ]
        logger.debug("Retrieved {} candidates | namespace={}", len(scored), namespace)
        return scored


def filter_relevant(
    scored: Sequence[tuple[RetrievedPassage, float]],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[RetrievedPassage]:
    """Keep passages scoring at or above *threshold*, preserving order.

    Kept passages carry their score. An empty result is not an error: the
    request simply proceeds ungrounded.
    """
    return [
        passage.model_copy(update={"score": score})
        for passage, score in scored
        if score >= threshold
    ]
