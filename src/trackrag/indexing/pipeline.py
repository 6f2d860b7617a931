"""Upload-path indexing: chunk a document, embed the chunks, record state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.batcher import EmbeddingBatcher, SlotStatus
from trackrag.indexing.chunker import chunk
from trackrag.indexing.errors import (
    DimensionMismatchError,
    ProviderError,
    StoreError,
)
from trackrag.indexing.models import IndexState, IndexStatus
from trackrag.indexing.state import IndexingStateMachine, content_digest
from trackrag.indexing.store.base import VectorStore

__all__ = ["DocumentIndexer", "TextLoader"]

TextLoader = Callable[[IndexState], str]


@dataclass(slots=True)
class DocumentIndexer:
    """Index documents chunk by chunk through the state machine."""

    store: VectorStore
    batcher: EmbeddingBatcher
    states: IndexingStateMachine
    max_len: int = 1000
    overlap: int = 200
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="document-indexer")

    def index_document(self, document_id: str, text: str) -> IndexState:
        """Index ``text`` as the content of ``document_id``.

        An unavailable provider leaves the document untouched (a ``PENDING``
        document stays ``PENDING``). Unchanged content of an ``INDEXED``
        document is a no-op.

        Raises:
            DimensionMismatchError: After marking the document ``FAILED``.
            InvalidTransitionError: If the document is already being indexed.
        """

        current = self.states.state(document_id)
        if not self.batcher.is_available():
            self.logger.warning(
                "index-deferred",
                document_id=document_id,
                status=current.status.value,
                reason="provider-unavailable",
            )
            return current

        digest = content_digest(text)
        if current.status is IndexStatus.INDEXED:
            if current.content_hash == digest:
                self.logger.info("index-unchanged", document_id=document_id)
                return current
            self.states.resubmit(document_id)
        elif current.status is IndexStatus.FAILED:
            self.states.resubmit(document_id)

        self.states.start(document_id, content_hash=digest)
        try:
            return self._index_chunks(document_id, text)
        except DimensionMismatchError as exc:
            self.states.mark_failed(document_id, str(exc))
            raise
        except (ProviderError, StoreError) as exc:
            self.logger.error(
                "index-document-failed",
                document_id=document_id,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return self.states.mark_failed(document_id, str(exc))

    def _index_chunks(self, document_id: str, text: str) -> IndexState:
        chunks = list(
            chunk(text, self.max_len, self.overlap, document_id=document_id)
        )
        self.store.replace_chunks(document_id, chunks)

        result = self.batcher.embed_detailed([item.text for item in chunks])

        embedded = 0
        write_failures = 0
        for item, vector in zip(chunks, result.vectors):
            if vector is None:
                continue
            try:
                self.store.upsert_chunk_embedding(document_id, item.ordinal, vector)
            except StoreError as exc:
                write_failures += 1
                self.logger.warning(
                    "chunk-write-failed",
                    document_id=document_id,
                    ordinal=item.ordinal,
                    error=str(exc),
                )
                continue
            embedded += 1

        detail = _describe_shortfall(
            failed=result.count(SlotStatus.FAILED),
            rejected=result.count(SlotStatus.REJECTED),
            skipped=result.count(SlotStatus.SKIPPED),
            write_failures=write_failures,
        )
        state = self.states.resolve(
            document_id,
            embedded=embedded,
            total=len(chunks),
            detail=detail,
        )
        self.logger.info(
            "index-document-complete",
            document_id=document_id,
            status=state.status.value,
            chunks=len(chunks),
            embedded=embedded,
        )
        return state

    def index_pending(
        self,
        load_text: TextLoader,
        *,
        project_id: str | None = None,
    ) -> list[IndexState]:
        """Index every ``PENDING`` document, loading content via ``load_text``."""

        outcomes: list[IndexState] = []
        pending = self.store.list_documents(
            statuses=(IndexStatus.PENDING,),
            project_id=project_id,
        )
        for state in pending:
            try:
                text = load_text(state)
            except OSError as exc:
                self.logger.error(
                    "index-load-failed",
                    document_id=state.document_id,
                    error=str(exc),
                )
                outcomes.append(state)
                continue
            outcomes.append(self.index_document(state.document_id, text))
        return outcomes


def _describe_shortfall(
    *,
    failed: int,
    rejected: int,
    skipped: int,
    write_failures: int,
) -> str | None:
    parts = [
        f"{label}={count}"
        for label, count in (
            ("failed", failed),
            ("rejected", rejected),
            ("cancelled", skipped),
            ("write_failures", write_failures),
        )
        if count
    ]
    return ", ".join(parts) or None
