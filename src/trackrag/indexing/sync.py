"""Backfill sync over rows whose coarse embedding is missing."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.batcher import EmbeddingBatcher, SlotStatus
from trackrag.indexing.errors import (
    AlreadyRunningError,
    DimensionMismatchError,
    TrackragError,
)
from trackrag.indexing.models import KindStats, SourceKind, SyncRun
from trackrag.indexing.store.base import VectorStore

__all__ = [
    "SYNC_ORDER",
    "SingleFlightGuard",
    "BackfillSyncOrchestrator",
]

SYNC_ORDER: tuple[SourceKind, ...] = (
    SourceKind.PROJECT,
    SourceKind.TASK,
    SourceKind.DOCUMENT,
)


def _default_now() -> datetime:
    return datetime.now(timezone.utc)


class SingleFlightGuard:
    """Non-blocking lock used as a context manager.

    Entering while another holder is inside raises
    :class:`AlreadyRunningError` immediately; leaving always releases.
    """

    def __init__(self, lock: threading.Lock | None = None) -> None:
        self._lock = lock or threading.Lock()

    @property
    def is_held(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> "SingleFlightGuard":
        if not self._lock.acquire(blocking=False):
            raise AlreadyRunningError("Backfill sync is already running")
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


@dataclass(slots=True)
class BackfillSyncOrchestrator:
    """Embed every project, task and document lacking a coarse embedding.

    Kinds run concurrently; rows that fail keep a NULL embedding and are
    picked up again by the next run.
    """

    store: VectorStore
    batcher: EmbeddingBatcher
    batch_size: int = 20
    max_concurrency: int = 3
    guard: SingleFlightGuard = field(default_factory=SingleFlightGuard)
    logger: Logger | None = None
    now: Callable[[], datetime] = _default_now
    _stop: threading.Event = field(
        init=False,
        default_factory=threading.Event,
        repr=False,
    )

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.logger is None:
            self.logger = get_logger(__name__, component="backfill-sync")

    def status(self) -> dict[str, bool]:
        return {"is_running": self.guard.is_held}

    def request_stop(self) -> None:
        """Stop starting new sub-batches; in-flight calls finish."""

        self._stop.set()
        self.logger.info("sync-stop-requested")

    def sync_all(self) -> SyncRun:
        """Run projects, tasks and documents in one guarded pass.

        Raises:
            AlreadyRunningError: If a sync is in flight.
            ProviderUnavailableError: If the provider is unavailable.
            DimensionMismatchError: If the provider returns vectors of the
                wrong width.
        """

        return self._run(SYNC_ORDER)

    def sync_kind(self, kind: SourceKind) -> SyncRun:
        """Run a single kind under the same guard as :meth:`sync_all`."""

        return self._run((SourceKind(kind),))

    def _run(self, kinds: Iterable[SourceKind]) -> SyncRun:
        kinds = tuple(kinds)
        with self.guard:
            self.batcher.ensure_available()
            self._stop.clear()
            run = SyncRun(started_at=self.now())
            self.logger.info(
                "sync-started",
                kinds=[kind.value for kind in kinds],
                batch_size=self.batch_size,
            )

            fatal: list[BaseException] = []
            workers = min(self.max_concurrency, len(kinds))
            with ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="trackrag-sync",
            ) as executor:
                futures = {
                    executor.submit(self._sync_kind, kind): kind
                    for kind in kinds
                }
                for future in as_completed(futures):
                    kind = futures[future]
                    try:
                        run.record(kind, future.result())
                    except DimensionMismatchError as exc:
                        self.logger.error(
                            "sync-kind-aborted",
                            kind=kind.value,
                            error=str(exc),
                        )
                        fatal.append(exc)

            run.finished_at = self.now()
            run.cancelled = self._stop.is_set()
            if fatal:
                raise fatal[0]

            self.logger.info("sync-summary", **run.to_mapping())
            return run

    def _sync_kind(self, kind: SourceKind) -> KindStats:
        try:
            ids = self.store.find_missing_embeddings(kind)
        except TrackragError as exc:
            self.logger.warning(
                "sync-kind-failed",
                kind=kind.value,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return KindStats()
        stats = KindStats(total=len(ids))

        for offset in range(0, len(ids), self.batch_size):
            if self._stop.is_set():
                break
            batch_ids = ids[offset : offset + self.batch_size]
            try:
                sources = self.store.fetch_source_texts(kind, batch_ids)
                result = self.batcher.embed_detailed(
                    [source.raw_text for source in sources],
                    stop_event=self._stop,
                )
            except DimensionMismatchError:
                raise
            except TrackragError as exc:
                stats.failed += len(batch_ids)
                self.logger.warning(
                    "sync-batch-failed",
                    kind=kind.value,
                    batch_size=len(batch_ids),
                    error_type=exc.__class__.__name__,
                    error=str(exc),
                )
                continue

            for source, vector, status in zip(
                sources,
                result.vectors,
                result.statuses,
            ):
                if vector is None:
                    if status is not SlotStatus.SKIPPED:
                        stats.failed += 1
                    continue
                try:
                    self.store.upsert_embedding(kind, source.id, vector)
                except DimensionMismatchError:
                    raise
                except TrackragError as exc:
                    stats.failed += 1
                    self.logger.warning(
                        "sync-row-failed",
                        kind=kind.value,
                        id=source.id,
                        error=str(exc),
                    )
                    continue
                stats.synced += 1

        self.logger.info(
            "sync-kind-complete",
            kind=kind.value,
            **stats.to_mapping(),
        )
        return stats
