"""Provider-sized sub-batching with per-batch failure isolation."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Mapping, Sequence

from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.errors import (
    DimensionMismatchError,
    ProviderBatchFailureError,
    ProviderUnavailableError,
)
from trackrag.indexing.models import EmbeddingVector
from trackrag.indexing.providers import EmbeddingProvider, EmbeddingProviderModel

__all__ = [
    "SlotStatus",
    "BatchEmbedding",
    "EmbeddingBatcher",
    "clean_text",
]


class SlotStatus(StrEnum):
    """Outcome of one input slot."""

    EMBEDDED = "embedded"
    REJECTED = "rejected"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class BatchEmbedding:
    """Per-slot vectors and outcomes for one :meth:`embed_detailed` call."""

    vectors: tuple[EmbeddingVector | None, ...]
    statuses: tuple[SlotStatus, ...]
    errors: tuple[ProviderBatchFailureError, ...] = ()
    cancelled: bool = False

    @property
    def failed_batches(self) -> int:
        return len(self.errors)

    def __len__(self) -> int:
        return len(self.vectors)

    def count(self, status: SlotStatus) -> int:
        return sum(1 for item in self.statuses if item is status)


def clean_text(text: str, max_chars: int) -> str:
    """Collapse whitespace runs, trim, and truncate to ``max_chars``.

    Example:
        >>> clean_text("  hello\\n\\n  world ", 8)
        'hello wo'
    """

    return " ".join(text.split())[:max_chars]


@dataclass(slots=True)
class EmbeddingBatcher:
    """Split inputs into sub-batches and embed them one provider call each.

    A sub-batch that times out or raises is marked failed and the remaining
    sub-batches still run. Only an unavailable provider (checked once up
    front) and a dimension mismatch abort the whole call.
    """

    provider: EmbeddingProvider
    dim: int
    batch_size: int = 100
    timeout: float = 30.0
    max_input_chars: int = 8000
    stop_event: threading.Event = field(default_factory=threading.Event)
    logger: Logger | None = None
    _stats: dict[str, int] = field(init=False, repr=False)
    _lock: threading.Lock = field(init=False, repr=False)
    _model: EmbeddingProviderModel | None = field(
        init=False,
        default=None,
        repr=False,
    )

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.logger is None:
            self.logger = get_logger(__name__, component="embedding-batcher")
        self._lock = threading.Lock()
        self._stats = {
            "requests": 0,
            "failed_batches": 0,
            "timeouts": 0,
            "embedded": 0,
            "rejected": 0,
        }

    @property
    def stats(self) -> Mapping[str, int]:
        with self._lock:
            return dict(self._stats)

    @property
    def model(self) -> EmbeddingProviderModel:
        if self._model is None:
            self._model = self.provider.describe_model()
        return self._model

    def is_available(self) -> bool:
        return self.provider.is_available()

    def ensure_available(self) -> None:
        """Raise :class:`ProviderUnavailableError` if the provider is down."""

        if not self.provider.is_available():
            model = self.model
            raise ProviderUnavailableError(
                "Embedding provider is not available (missing credentials?).",
                provider=model.provider,
                model=model.name,
            )

    def embed_batch(
        self,
        texts: Sequence[str],
        *,
        stop_event: threading.Event | None = None,
    ) -> list[EmbeddingVector | None]:
        """Return one vector (or ``None``) per input, in input order."""

        return list(self.embed_detailed(texts, stop_event=stop_event).vectors)

    def embed_detailed(
        self,
        texts: Sequence[str],
        *,
        stop_event: threading.Event | None = None,
    ) -> BatchEmbedding:
        """Embed ``texts`` and report the outcome of every slot.

        Raises:
            ProviderUnavailableError: Before any work if the provider is
                unavailable.
            DimensionMismatchError: If a returned vector has the wrong width.
        """

        if not texts:
            return BatchEmbedding(vectors=(), statuses=())

        self.ensure_available()
        stop = self.stop_event if stop_event is None else stop_event

        cleaned = [clean_text(text, self.max_input_chars) for text in texts]
        vectors: list[EmbeddingVector | None] = [None] * len(texts)
        statuses = [
            SlotStatus.SKIPPED if text else SlotStatus.REJECTED
            for text in cleaned
        ]
        pending = [index for index, text in enumerate(cleaned) if text]
        self._bump("rejected", len(texts) - len(pending))

        errors: list[ProviderBatchFailureError] = []
        cancelled = False
        for offset in range(0, len(pending), self.batch_size):
            if stop.is_set():
                cancelled = True
                self.logger.info(
                    "embed-batch-cancelled",
                    remaining=len(pending) - offset,
                )
                break

            indices = pending[offset : offset + self.batch_size]
            try:
                results = self._embed_sub_batch([cleaned[i] for i in indices])
            except ProviderBatchFailureError as exc:
                errors.append(exc)
                self._bump("failed_batches")
                self.logger.warning(
                    "embed-batch-failed",
                    batch_size=exc.batch_size,
                    timed_out=exc.timed_out,
                    error=exc.message,
                )
                for index in indices:
                    statuses[index] = SlotStatus.FAILED
                continue

            for index, vector in zip(indices, results):
                if vector is None:
                    statuses[index] = SlotStatus.REJECTED
                    self._bump("rejected")
                    continue
                vectors[index] = vector
                statuses[index] = SlotStatus.EMBEDDED
                self._bump("embedded")

        return BatchEmbedding(
            vectors=tuple(vectors),
            statuses=tuple(statuses),
            errors=tuple(errors),
            cancelled=cancelled,
        )

    def _embed_sub_batch(
        self,
        texts: list[str],
    ) -> list[EmbeddingVector | None]:
        """Return vectors for one sub-batch.

        Raises:
            ProviderBatchFailureError: If the call timed out, raised, or
                returned the wrong number of vectors.
            DimensionMismatchError: If a vector has the wrong width.
        """

        self._bump("requests")
        model = self.model
        executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="trackrag-embed",
        )
        try:
            future = executor.submit(self.provider.embed, texts)
            results = future.result(timeout=self.timeout)
        except FuturesTimeoutError as exc:
            self._bump("timeouts")
            raise ProviderBatchFailureError(
                f"Provider call timed out after {self.timeout}s.",
                provider=model.provider,
                model=model.name,
                batch_size=len(texts),
                timed_out=True,
            ) from exc
        except Exception as exc:
            raise ProviderBatchFailureError(
                f"{exc.__class__.__name__}: {exc}",
                provider=model.provider,
                model=model.name,
                status_code=getattr(exc, "status_code", None),
                request_id=getattr(exc, "request_id", None),
                batch_size=len(texts),
            ) from exc
        finally:
            # A timed-out call keeps its worker thread; do not wait for it.
            executor.shutdown(wait=False, cancel_futures=True)

        if len(results) != len(texts):
            raise ProviderBatchFailureError(
                (
                    f"Provider returned {len(results)} vectors for "
                    f"{len(texts)} inputs."
                ),
                provider=model.provider,
                model=model.name,
                batch_size=len(texts),
            )

        normalized: list[EmbeddingVector | None] = []
        for vector in results:
            if vector is None:
                normalized.append(None)
                continue
            if len(vector) != self.dim:
                raise DimensionMismatchError(
                    (
                        "Embedding dimension mismatch: expected "
                        f"{self.dim}, got {len(vector)}."
                    ),
                    expected=self.dim,
                    actual=len(vector),
                )
            normalized.append(tuple(float(value) for value in vector))
        return normalized

    def _bump(self, key: str, amount: int = 1) -> None:
        if amount:
            with self._lock:
                self._stats[key] += amount
