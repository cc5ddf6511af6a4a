"""Namespaced vector index on SQLite with the sqlite-vec extension."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import sqlite_vec
from loguru import logger
from sqlite_vec import serialize_float32

from docchat.domain.models import ScoredNeighbor


@dataclass
class PassageRecord:
    """A chunk of document text ready to be indexed."""

    chunk_id: str
    document_name: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class SqliteVecIndex:
    """Cosine-similarity search over a ``vec0`` table partitioned by namespace.

    Passage text and metadata live in a plain ``passages`` table joined on
    ``chunk_id``; the ``vec0`` partition key keeps every KNN query inside a
    single namespace.
    """

    def __init__(self, db_path: Path, embedding_dim: int = 1536) -> None:
        self.db_path = db_path
        self.embedding_dim = embedding_dim
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open the database, load the vector extension, and ensure tables exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.enable_load_extension(True)
        sqlite_vec.load(self.conn)
        self.conn.enable_load_extension(False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("Vector index ready at {} (dim={})", self.db_path, self.embedding_dim)

    def close(self) -> None:
        if self.conn:
            self.conn.close()

    def _create_tables(self) -> None:
        assert self.conn
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS passages (
                chunk_id TEXT PRIMARY KEY,
                namespace TEXT NOT NULL,
                document_name TEXT,
                content TEXT NOT NULL,
                metadata TEXT DEFAULT '{}'
            )
        """)
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_passages_namespace ON passages(namespace)"
        )
        self.conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS vec_passages USING vec0(
                chunk_id text primary key,
                namespace text partition key,
                embedding float[{self.embedding_dim}] distance_metric=cosine
            )
        """)
        self.conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_passages(
        self,
        namespace: str,
        passages: list[PassageRecord],
        embeddings: list[list[float]],
    ) -> None:
        """Index passages under *namespace*."""
        if not self.conn:
            raise RuntimeError("Not connected")
        if len(passages) != len(embeddings):
            raise ValueError("passages and embeddings must have the same length")

        with self._lock:
            for passage, embedding in zip(passages, embeddings):
                self.conn.execute(
                    "INSERT INTO passages (chunk_id, namespace, document_name, content, metadata) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        passage.chunk_id,
                        namespace,
                        passage.document_name,
                        passage.content,
                        json.dumps(passage.metadata),
                    ),
                )
                self.conn.execute(
                    "INSERT INTO vec_passages (chunk_id, namespace, embedding) VALUES (?, ?, ?)",
                    (passage.chunk_id, namespace, serialize_float32(embedding)),
                )
            self.conn.commit()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def query(self, namespace: str, vector: list[float], k: int) -> list[ScoredNeighbor]:
        """Return the *k* nearest passages in *namespace*, best first.

        The score is cosine similarity (``1 - cosine distance``).
        """
        if not self.conn:
            raise RuntimeError("Not connected")

        with self._lock:
            rows = self.conn.execute(
                """
                WITH knn AS (
                    SELECT chunk_id, distance
                    FROM vec_passages
                    WHERE embedding MATCH ? AND k = ? AND namespace = ?
                )
                SELECT knn.chunk_id, knn.distance, p.document_name, p.content, p.metadata
                FROM knn
                JOIN passages p ON p.chunk_id = knn.chunk_id
                WHERE p.namespace = ?
                ORDER BY knn.distance
                """,
                (serialize_float32(vector), k, namespace, namespace),
            ).fetchall()

        return [self._row_to_neighbor(row) for row in rows]

    @staticmethod
    def _row_to_neighbor(row: sqlite3.Row) -> ScoredNeighbor:
        metadata = row["metadata"] or "{}"
        try:
            metadata = json.loads(metadata)
        except (json.JSONDecodeError, TypeError):
            metadata = {}
        if not isinstance(metadata, dict):
            metadata = {}
        if row["document_name"]:
            metadata.setdefault("documentName", row["document_name"])
        return ScoredNeighbor(
            id=row["chunk_id"],
            score=1.0 - float(row["distance"]),
            text=row["content"],
            metadata=metadata,
        )
