"""Project-scoped nearest-neighbour retrieval over document chunks."""

from __future__ import annotations

from dataclasses import dataclass

from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.batcher import EmbeddingBatcher, SlotStatus
from trackrag.indexing.errors import (
    CrossScopeLeakError,
    ProviderUnavailableError,
    QueryNotEmbeddableError,
)
from trackrag.indexing.models import IndexHealth, RetrievalResult
from trackrag.indexing.store.base import VectorStore

__all__ = ["RetrievalEngine"]


@dataclass(slots=True)
class RetrievalEngine:
    """Embed a query and return the closest chunks of one project."""

    store: VectorStore
    batcher: EmbeddingBatcher
    default_k: int = 5
    max_k: int = 50
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="retrieval")

    def retrieve(
        self,
        project_id: str,
        query_text: str,
        k: int | None = None,
    ) -> list[RetrievalResult]:
        """Return at most ``k`` chunks of ``project_id``, best first.

        Ordering is score descending, then ordinal, then document id. Fewer
        than ``k`` results are returned when the project has fewer chunks.

        Raises:
            ValueError: If ``k`` is smaller than one or above ``max_k``.
            ProviderUnavailableError: If the query could not be embedded for
                transient reasons; safe to retry.
            QueryNotEmbeddableError: If the provider rejected the query text.
            CrossScopeLeakError: If the store returned another project's
                chunk.
        """

        limit = self.default_k if k is None else k
        if limit < 1:
            raise ValueError(f"k must be >= 1 (got {limit})")
        if limit > self.max_k:
            raise ValueError(f"k must be <= {self.max_k} (got {limit})")

        embedded = self.batcher.embed_detailed([query_text])
        status = embedded.statuses[0]
        vector = embedded.vectors[0]
        if status is SlotStatus.REJECTED:
            raise QueryNotEmbeddableError(
                "Query text cannot be embedded (empty or over the input limit)."
            )
        if status is not SlotStatus.EMBEDDED or vector is None:
            model = self.batcher.model
            raise ProviderUnavailableError(
                "Embedding provider failed to embed the query.",
                provider=model.provider,
                model=model.name,
            )

        results = self.store.nearest_neighbors(project_id, vector, limit)
        for result in results:
            if result.project_id != project_id:
                raise CrossScopeLeakError(
                    (
                        "Retrieval for project "
                        f"{project_id!r} returned a chunk of "
                        f"{result.project_id!r}."
                    ),
                    expected_project=project_id,
                    actual_project=result.project_id,
                )

        self.logger.info(
            "retrieval-complete",
            project_id=project_id,
            k=limit,
            returned=len(results),
        )
        return results

    def index_health(self, project_id: str) -> IndexHealth:
        """Report how many of the project's documents are indexed."""

        return self.store.index_health(project_id)
