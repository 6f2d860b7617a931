"""Storage boundary used by the indexing components."""

from __future__ import annotations

from datetime import datetime
from typing import Collection, Protocol, Sequence, runtime_checkable

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

__all__ = ["VectorStore"]


@runtime_checkable
class VectorStore(Protocol):
    """Persists embeddings and answers missing-row and neighbour queries."""

    dim: int

    def find_missing_embeddings(self, kind: SourceKind) -> list[str]:
        """Return ids of ``kind`` rows whose embedding is NULL."""

    def fetch_source_texts(
        self,
        kind: SourceKind,
        ids: Sequence[str],
    ) -> list[SourceText]:
        """Return the summary text of each existing row in ``ids``."""

    def upsert_embedding(
        self,
        kind: SourceKind,
        id: str,
        vector: EmbeddingVector,
    ) -> None:
        """Replace the coarse embedding of one row."""

    def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        """Drop the document's stored chunks and insert ``chunks``."""

    def upsert_chunk_embedding(
        self,
        document_id: str,
        ordinal: int,
        vector: EmbeddingVector,
    ) -> None:
        """Replace the embedding of one stored chunk."""

    def nearest_neighbors(
        self,
        project_id: str,
        vector: EmbeddingVector,
        k: int,
    ) -> list[RetrievalResult]:
        """Return up to ``k`` chunks of ``project_id`` closest to ``vector``."""

    def get_index_state(self, document_id: str) -> IndexState:
        """Return the indexing fields of a document."""

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
        """Compare-and-set the status; ``False`` if it was not ``expected``."""

    def list_documents(
        self,
        *,
        statuses: Collection[IndexStatus] | None = None,
        project_id: str | None = None,
    ) -> list[IndexState]:
        """Return document states filtered by status and project."""

    def index_health(self, project_id: str) -> IndexHealth:
        """Return per-status document counts for a project."""
