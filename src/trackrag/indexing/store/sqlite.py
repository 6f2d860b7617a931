"""SQLite-backed vector store.

Embeddings live in BLOB columns as little-endian float32 arrays. Similarity
is computed with numpy over the chunks of a single project, which keeps the
project scope a property of the SQL ``WHERE`` clause rather than of a
post-filter.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Collection, Iterator, Mapping, Sequence

import numpy as np

from trackrag.core.config import VectorMetric
from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.errors import (
    DimensionMismatchError,
    DocumentNotFoundError,
    StoreError,
)
from trackrag.indexing.models import (
    Chunk,
    EmbeddingVector,
    IndexHealth,
    IndexState,
    IndexStatus,
    RetrievalResult,
    SourceKind,
    SourceText,
)
from trackrag.indexing.summaries import Summarizer, default_summarizers
from trackrag.resources import read_resource_text

__all__ = ["SqliteStore", "SCHEMA_RESOURCE_NAME"]

SCHEMA_RESOURCE_NAME = "schema.sql"

_VECTOR_DTYPE = np.dtype("<f4")
_BUSY_TIMEOUT = 30.0


def _default_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class SqliteStore:
    """Relational store for projects, tasks, documents and their chunks."""

    path: Path
    dim: int
    metric: VectorMetric = VectorMetric.COSINE
    summarizers: Mapping[SourceKind, Summarizer] = field(
        default_factory=default_summarizers
    )
    logger: Logger | None = None
    now: Callable[[], datetime] = _default_now

    def __post_init__(self) -> None:
        if self.dim < 1:
            raise ValueError("dim must be >= 1")
        self.metric = VectorMetric(self.metric)
        if self.logger is None:
            self.logger = get_logger(__name__, component="sqlite-store")

    # ------------------------------------------------------------------
    # Connection and schema
    # ------------------------------------------------------------------
    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self.path, timeout=_BUSY_TIMEOUT)
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            with connection:
                yield connection
        except sqlite3.DatabaseError as exc:
            raise StoreError(f"SQLite error on {self.path}: {exc}") from exc
        finally:
            connection.close()

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist yet."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        script = read_resource_text(SCHEMA_RESOURCE_NAME)
        with self._connect() as connection:
            connection.execute("PRAGMA journal_mode = WAL")
            connection.executescript(script)
        self.logger.debug("store-schema-ready", path=str(self.path))

    # ------------------------------------------------------------------
    # Vector encoding
    # ------------------------------------------------------------------
    def _encode(self, vector: Sequence[float]) -> bytes:
        if len(vector) != self.dim:
            raise DimensionMismatchError(
                (
                    "Embedding dimension mismatch: store expects "
                    f"{self.dim}, got {len(vector)}."
                ),
                expected=self.dim,
                actual=len(vector),
            )
        return np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes()

    def _decode(self, blob: bytes) -> np.ndarray:
        array = np.frombuffer(blob, dtype=_VECTOR_DTYPE)
        if array.size != self.dim:
            raise DimensionMismatchError(
                (
                    "Stored embedding has dimension "
                    f"{array.size}; store expects {self.dim}."
                ),
                expected=self.dim,
                actual=int(array.size),
            )
        return array

    # ------------------------------------------------------------------
    # Upstream rows
    # ------------------------------------------------------------------
    def add_project(
        self,
        project_id: str,
        title: str,
        description: str | None = None,
    ) -> None:
        with self._connect() as connection:
            connection.execute(
                "INSERT INTO projects (id, title, description, created_at) "
                "VALUES (?, ?, ?, ?)",
                (project_id, title, description, self.now().isoformat()),
            )

    def has_project(self, project_id: str) -> bool:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT 1 FROM projects WHERE id = ?",
                (project_id,),
            ).fetchone()
        return row is not None

    def add_task(
        self,
        task_id: str,
        project_id: str,
        title: str,
        description: str | None = None,
    ) -> None:
        with self._connect() as connection:
            connection.execute(
                "INSERT INTO tasks (id, project_id, title, description, "
                "created_at) VALUES (?, ?, ?, ?, ?)",
                (task_id, project_id, title, description, self.now().isoformat()),
            )

    def add_document(
        self,
        document_id: str,
        project_id: str,
        file_name: str,
        description: str | None = None,
    ) -> IndexState:
        """Insert a document row in ``PENDING`` state."""

        stamp = self.now().isoformat()
        with self._connect() as connection:
            connection.execute(
                "INSERT INTO documents (id, project_id, file_name, description, "
                "index_status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    document_id,
                    project_id,
                    file_name,
                    description,
                    IndexStatus.PENDING.value,
                    stamp,
                    stamp,
                ),
            )
        return self.get_index_state(document_id)

    def update_document_metadata(
        self,
        document_id: str,
        *,
        file_name: str | None = None,
        description: str | None = None,
    ) -> None:
        """Edit file name or description.

        Clears the coarse embedding so the next backfill refreshes it; the
        chunk index and its status are left alone.
        """

        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE documents SET file_name = COALESCE(?, file_name), "
                "description = COALESCE(?, description), embedding = NULL, "
                "embedded_at = NULL, updated_at = ? WHERE id = ?",
                (file_name, description, self.now().isoformat(), document_id),
            )
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(f"Document {document_id!r} not found")

    # ------------------------------------------------------------------
    # Coarse embeddings
    # ------------------------------------------------------------------
    def find_missing_embeddings(self, kind: SourceKind) -> list[str]:
        table = SourceKind(kind).table
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT id FROM {table} WHERE embedding IS NULL "
                "ORDER BY created_at, id"
            ).fetchall()
        return [row["id"] for row in rows]

    def fetch_source_texts(
        self,
        kind: SourceKind,
        ids: Sequence[str],
    ) -> list[SourceText]:
        kind = SourceKind(kind)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT * FROM {kind.table} WHERE id IN ({placeholders})",
                tuple(ids),
            ).fetchall()
        by_id = {row["id"]: row for row in rows}
        summarize = self.summarizers[kind]
        return [
            SourceText(id=item, kind=kind, raw_text=summarize(by_id[item]))
            for item in ids
            if item in by_id
        ]

    def upsert_embedding(
        self,
        kind: SourceKind,
        id: str,
        vector: EmbeddingVector,
    ) -> None:
        table = SourceKind(kind).table
        blob = self._encode(vector)
        with self._connect() as connection:
            cursor = connection.execute(
                f"UPDATE {table} SET embedding = ?, embedded_at = ? WHERE id = ?",
                (blob, self.now().isoformat(), id),
            )
            if cursor.rowcount == 0:
                raise StoreError(f"{kind} {id!r} not found in {table}")

    def get_embedding(self, kind: SourceKind, id: str) -> EmbeddingVector | None:
        table = SourceKind(kind).table
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT embedding FROM {table} WHERE id = ?",
                (id,),
            ).fetchone()
        if row is None or row["embedding"] is None:
            return None
        return tuple(float(value) for value in self._decode(row["embedding"]))

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------
    def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        stamp = self.now().isoformat()
        with self._connect() as connection:
            connection.execute(
                "DELETE FROM document_chunks WHERE document_id = ?",
                (document_id,),
            )
            connection.executemany(
                "INSERT INTO document_chunks (document_id, chunk_index, "
                "content, start_offset, embedding, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        document_id,
                        item.ordinal,
                        item.text,
                        item.start,
                        None if item.embedding is None else self._encode(item.embedding),
                        stamp,
                    )
                    for item in chunks
                ],
            )

    def upsert_chunk_embedding(
        self,
        document_id: str,
        ordinal: int,
        vector: EmbeddingVector,
    ) -> None:
        blob = self._encode(vector)
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE document_chunks SET embedding = ? "
                "WHERE document_id = ? AND chunk_index = ?",
                (blob, document_id, ordinal),
            )
            if cursor.rowcount == 0:
                raise StoreError(
                    f"Chunk {ordinal} of document {document_id!r} not found"
                )

    def list_chunks(self, document_id: str) -> list[Chunk]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM document_chunks WHERE document_id = ? "
                "ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        blob = row["embedding"]
        embedding = (
            None
            if blob is None
            else tuple(float(value) for value in self._decode(blob))
        )
        return Chunk(
            document_id=row["document_id"],
            ordinal=row["chunk_index"],
            text=row["content"],
            start=row["start_offset"],
            embedding=embedding,
            created_at=_parse_timestamp(row["created_at"]),
        )

    def nearest_neighbors(
        self,
        project_id: str,
        vector: EmbeddingVector,
        k: int,
    ) -> list[RetrievalResult]:
        if k < 1:
            raise ValueError(f"k must be >= 1 (got {k})")
        query = np.frombuffer(self._encode(vector), dtype=_VECTOR_DTYPE)

        with self._connect() as connection:
            rows = connection.execute(
                "SELECT c.*, d.project_id AS project_id "
                "FROM document_chunks AS c "
                "JOIN documents AS d ON d.id = c.document_id "
                "WHERE d.project_id = ? AND c.embedding IS NOT NULL",
                (project_id,),
            ).fetchall()
        if not rows:
            return []

        matrix = np.vstack([self._decode(row["embedding"]) for row in rows])
        scores = self._score(matrix.astype(np.float64), query.astype(np.float64))

        order = sorted(
            range(len(rows)),
            key=lambda i: (
                -scores[i],
                rows[i]["chunk_index"],
                rows[i]["document_id"],
            ),
        )
        return [
            RetrievalResult(
                chunk=self._row_to_chunk(rows[i]),
                score=float(scores[i]),
                project_id=rows[i]["project_id"],
            )
            for i in order[:k]
        ]

    def _score(self, matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
        """Return higher-is-closer scores for each row of ``matrix``."""

        if self.metric is VectorMetric.L2:
            distances = np.linalg.norm(matrix - query, axis=1)
            return 1.0 / (1.0 + distances)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0.0] = 1.0
        return (matrix @ query) / norms

    # ------------------------------------------------------------------
    # Index state
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> IndexState:
        return IndexState(
            document_id=row["id"],
            project_id=row["project_id"],
            status=IndexStatus(row["index_status"]),
            chunk_count=row["chunk_count"],
            error_message=row["error_message"],
            indexed_at=_parse_timestamp(row["indexed_at"]),
            content_hash=row["content_hash"],
        )

    def get_index_state(self, document_id: str) -> IndexState:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id!r} not found")
        return self._row_to_state(row)

    def transition_status(
        self,
        document_id: str,
        *,
        expected: IndexStatus,
        target: IndexStatus,
        chunk_count: int | None = None,
        error_message: str | None = None,
        indexed_at: datetime | None = None,
        content_hash: str | None = None,
    ) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE documents SET index_status = ?, chunk_count = ?, "
                "error_message = ?, indexed_at = ?, "
                "content_hash = COALESCE(?, content_hash), updated_at = ? "
                "WHERE id = ? AND index_status = ?",
                (
                    IndexStatus(target).value,
                    chunk_count,
                    error_message,
                    indexed_at.isoformat() if indexed_at else None,
                    content_hash,
                    self.now().isoformat(),
                    document_id,
                    IndexStatus(expected).value,
                ),
            )
            return cursor.rowcount == 1

    def list_documents(
        self,
        *,
        statuses: Collection[IndexStatus] | None = None,
        project_id: str | None = None,
    ) -> list[IndexState]:
        clauses: list[str] = []
        params: list[str] = []
        if statuses:
            values = [IndexStatus(status).value for status in statuses]
            clauses.append(
                f"index_status IN ({', '.join('?' for _ in values)})"
            )
            params.extend(values)
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT * FROM documents{where} ORDER BY created_at, id",
                params,
            ).fetchall()
        return [self._row_to_state(row) for row in rows]

    def document_file_name(self, document_id: str) -> str:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT file_name FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id!r} not found")
        return row["file_name"]

    def index_health(self, project_id: str) -> IndexHealth:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT index_status, COUNT(*) AS total FROM documents "
                "WHERE project_id = ? GROUP BY index_status",
                (project_id,),
            ).fetchall()
        counts = {status: 0 for status in IndexStatus}
        for row in rows:
            counts[IndexStatus(row["index_status"])] = row["total"]
        return IndexHealth(project_id=project_id, counts=counts)
