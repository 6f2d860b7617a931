"""Document indexing, backfill sync and retrieval.

Example:
    >>> from trackrag.indexing import chunk
    >>> [c.ordinal for c in chunk("hello world", max_len=6, overlap=2)]
    [0, 1, 2]
"""

from __future__ import annotations

from .batcher import BatchEmbedding, EmbeddingBatcher, SlotStatus
from .chunker import chunk, reconstruct
from .models import (
    Chunk,
    IndexHealth,
    IndexState,
    IndexStatus,
    KindStats,
    RetrievalResult,
    SourceKind,
    SourceText,
    SyncRun,
)
from .pipeline import DocumentIndexer
from .retrieval import RetrievalEngine
from .state import IndexingStateMachine
from .sync import BackfillSyncOrchestrator

__all__ = [
    "BackfillSyncOrchestrator",
    "BatchEmbedding",
    "Chunk",
    "DocumentIndexer",
    "EmbeddingBatcher",
    "IndexHealth",
    "IndexState",
    "IndexStatus",
    "IndexingStateMachine",
    "KindStats",
    "RetrievalEngine",
    "RetrievalResult",
    "SlotStatus",
    "SourceKind",
    "SourceText",
    "SyncRun",
    "chunk",
    "reconstruct",
]
