"""Per-document indexing lifecycle.

::

    PENDING -> PROCESSING -> INDEXED
                          -> FAILED
    FAILED  -> PENDING     (resubmission)
    INDEXED -> PENDING     (content changed)

Every move is a compare-and-set on the stored status, so two workers racing
on the same document cannot both win.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.errors import InvalidTransitionError
from trackrag.indexing.models import IndexState, IndexStatus
from trackrag.indexing.store.base import VectorStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "IndexingStateMachine",
    "content_digest",
]

ALLOWED_TRANSITIONS: Mapping[IndexStatus, frozenset[IndexStatus]] = {
    IndexStatus.PENDING: frozenset({IndexStatus.PROCESSING}),
    IndexStatus.PROCESSING: frozenset({IndexStatus.INDEXED, IndexStatus.FAILED}),
    IndexStatus.FAILED: frozenset({IndexStatus.PENDING}),
    IndexStatus.INDEXED: frozenset({IndexStatus.PENDING}),
}


def _default_now() -> datetime:
    return datetime.now(timezone.utc)


def content_digest(text: str) -> str:
    """Return the SHA-256 hex digest used to detect content edits."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class IndexingStateMachine:
    """Drive documents through their index states."""

    store: VectorStore
    logger: Logger | None = None
    now: Callable[[], datetime] = _default_now

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="index-state")

    def state(self, document_id: str) -> IndexState:
        return self.store.get_index_state(document_id)

    def start(
        self,
        document_id: str,
        *,
        content_hash: str | None = None,
    ) -> IndexState:
        """Claim a ``PENDING`` document for indexing."""

        return self._transition(
            document_id,
            IndexStatus.PROCESSING,
            content_hash=content_hash,
        )

    def mark_indexed(self, document_id: str, chunk_count: int) -> IndexState:
        if chunk_count < 0:
            raise ValueError("chunk_count must be >= 0")
        return self._transition(
            document_id,
            IndexStatus.INDEXED,
            chunk_count=chunk_count,
            indexed_at=self.now(),
        )

    def mark_failed(self, document_id: str, message: str) -> IndexState:
        return self._transition(
            document_id,
            IndexStatus.FAILED,
            error_message=message or "indexing failed",
        )

    def resubmit(self, document_id: str) -> IndexState:
        """Send a ``FAILED`` or ``INDEXED`` document back to ``PENDING``."""

        return self._transition(document_id, IndexStatus.PENDING)

    def content_changed(self, document_id: str, text: str) -> bool:
        """Reopen an indexed document if ``text`` differs from what was indexed.

        Returns ``True`` when the document was sent back to ``PENDING``.
        Metadata edits never go through here.
        """

        current = self.state(document_id)
        digest = content_digest(text)
        if current.content_hash == digest:
            return False
        if current.status not in (IndexStatus.INDEXED, IndexStatus.FAILED):
            return False
        self._transition(document_id, IndexStatus.PENDING, content_hash=digest)
        return True

    def resolve(
        self,
        document_id: str,
        *,
        embedded: int,
        total: int,
        detail: str | None = None,
    ) -> IndexState:
        """Finish a run: all chunks embedded means ``INDEXED``, else ``FAILED``."""

        if embedded == total:
            return self.mark_indexed(document_id, chunk_count=total)
        message = f"{embedded} of {total} chunks embedded"
        if detail:
            message = f"{message}; {detail}"
        return self.mark_failed(document_id, message)

    def _transition(
        self,
        document_id: str,
        target: IndexStatus,
        *,
        chunk_count: int | None = None,
        error_message: str | None = None,
        indexed_at: datetime | None = None,
        content_hash: str | None = None,
    ) -> IndexState:
        current = self.state(document_id)
        if target not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                (
                    f"Document {document_id!r} cannot move from "
                    f"{current.status} to {target}."
                ),
                document_id=document_id,
                current=current.status.value,
                target=target.value,
            )

        applied = self.store.transition_status(
            document_id,
            expected=current.status,
            target=target,
            chunk_count=chunk_count,
            error_message=error_message,
            indexed_at=indexed_at,
            content_hash=content_hash,
        )
        if not applied:
            latest = self.state(document_id)
            raise InvalidTransitionError(
                (
                    f"Document {document_id!r} changed concurrently "
                    f"(now {latest.status}); cannot move to {target}."
                ),
                document_id=document_id,
                current=latest.status.value,
                target=target.value,
            )

        self.logger.info(
            "index-status-changed",
            document_id=document_id,
            previous=current.status.value,
            status=target.value,
            chunk_count=chunk_count,
            error=error_message,
        )
        return self.state(document_id)
