"""Typed records passed between the indexing components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping

__all__ = [
    "EmbeddingVector",
    "SourceKind",
    "IndexStatus",
    "SourceText",
    "Chunk",
    "IndexState",
    "IndexHealth",
    "KindStats",
    "SyncRun",
    "RetrievalResult",
]

EmbeddingVector = tuple[float, ...]


class SourceKind(StrEnum):
    """Entity families that carry a coarse embedding."""

    PROJECT = "project"
    TASK = "task"
    DOCUMENT = "document"

    @property
    def table(self) -> str:
        return _KIND_TABLES[self]


_KIND_TABLES = {
    SourceKind.PROJECT: "projects",
    SourceKind.TASK: "tasks",
    SourceKind.DOCUMENT: "documents",
}


class IndexStatus(StrEnum):
    """Lifecycle of a document's chunk index."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class SourceText:
    """Text to embed for one entity."""

    id: str
    kind: SourceKind
    raw_text: str


@dataclass(frozen=True, slots=True)
class Chunk:
    """A window of a document's text.

    ``start`` is the character offset of the window in the source text, so
    ``text == source[start:start + len(text)]``.
    """

    document_id: str
    ordinal: int
    text: str
    start: int
    embedding: EmbeddingVector | None = None
    created_at: datetime | None = None

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass(frozen=True, slots=True)
class IndexState:
    """Persisted indexing fields of a document."""

    document_id: str
    project_id: str
    status: IndexStatus
    chunk_count: int | None = None
    error_message: str | None = None
    indexed_at: datetime | None = None
    content_hash: str | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "project_id": self.project_id,
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "error_message": self.error_message,
            "indexed_at": (
                self.indexed_at.isoformat() if self.indexed_at else None
            ),
        }


@dataclass(frozen=True, slots=True)
class IndexHealth:
    """Document counts per index status for one project."""

    project_id: str
    counts: Mapping[IndexStatus, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def complete(self) -> bool:
        """``True`` when every document of the project is indexed."""

        return self.counts.get(IndexStatus.INDEXED, 0) == self.total

    def to_mapping(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "total": self.total,
            "complete": self.complete,
            **{
                status.value.lower(): self.counts.get(status, 0)
                for status in IndexStatus
            },
        }


@dataclass(slots=True)
class KindStats:
    """Counters for one source kind within a sync run."""

    total: int = 0
    synced: int = 0
    failed: int = 0

    def to_mapping(self) -> dict[str, int]:
        return {"total": self.total, "synced": self.synced, "failed": self.failed}


@dataclass(slots=True)
class SyncRun:
    """Outcome of a backfill sync, returned to the caller."""

    started_at: datetime
    finished_at: datetime | None = None
    projects: KindStats = field(default_factory=KindStats)
    tasks: KindStats = field(default_factory=KindStats)
    documents: KindStats = field(default_factory=KindStats)
    cancelled: bool = False

    def stats_for(self, kind: SourceKind) -> KindStats:
        if kind is SourceKind.PROJECT:
            return self.projects
        if kind is SourceKind.TASK:
            return self.tasks
        return self.documents

    def record(self, kind: SourceKind, stats: KindStats) -> None:
        target = self.stats_for(kind)
        target.total = stats.total
        target.synced = stats.synced
        target.failed = stats.failed

    def to_mapping(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": (
                self.finished_at.isoformat() if self.finished_at else None
            ),
            "cancelled": self.cancelled,
            "projects": self.projects.to_mapping(),
            "tasks": self.tasks.to_mapping(),
            "documents": self.documents.to_mapping(),
        }


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    """A scored chunk returned by retrieval."""

    chunk: Chunk
    score: float
    project_id: str

    def to_mapping(self) -> dict[str, Any]:
        return {
            "document_id": self.chunk.document_id,
            "ordinal": self.chunk.ordinal,
            "score": self.score,
            "project_id": self.project_id,
            "text": self.chunk.text,
        }
