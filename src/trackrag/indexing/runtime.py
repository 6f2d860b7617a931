"""Wire the indexing components from an :class:`AppConfig`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from trackrag.core.config import AppConfig
from trackrag.core.logging import Logger, get_logger
from trackrag.indexing.batcher import EmbeddingBatcher
from trackrag.indexing.pipeline import DocumentIndexer
from trackrag.indexing.providers import (
    EmbeddingProvider,
    ProviderRegistry,
    create_default_provider_registry,
)
from trackrag.indexing.retrieval import RetrievalEngine
from trackrag.indexing.state import IndexingStateMachine
from trackrag.indexing.store.sqlite import SqliteStore
from trackrag.indexing.sync import BackfillSyncOrchestrator

__all__ = ["IndexingRuntime", "build_runtime"]


@dataclass(slots=True)
class IndexingRuntime:
    """Every component a caller needs, sharing one store and batcher."""

    config: AppConfig
    store: SqliteStore
    provider: EmbeddingProvider
    batcher: EmbeddingBatcher
    states: IndexingStateMachine
    indexer: DocumentIndexer
    sync: BackfillSyncOrchestrator
    retrieval: RetrievalEngine
    logger: Logger


def build_runtime(
    config: AppConfig,
    *,
    database_path: Path | None = None,
    registry: ProviderRegistry | None = None,
    provider: EmbeddingProvider | None = None,
    logger: Logger | None = None,
) -> IndexingRuntime:
    """Create the store (schema included), provider and services.

    ``provider`` bypasses the registry, which tests use to inject stubs.
    """

    logger = logger or get_logger(__name__, component="runtime")
    embedding = config.embedding

    if provider is None:
        providers = registry or create_default_provider_registry()
        provider = providers.create(
            embedding.provider,
            logger=logger.bind(component=f"provider-{embedding.provider}"),
            config={
                "model": embedding.model,
                "dim": embedding.dim,
                "timeout": embedding.request_timeout,
            },
        )

    store = SqliteStore(
        path=database_path or config.database_path,
        dim=embedding.dim,
        metric=config.store.metric,
        logger=logger.bind(component="sqlite-store"),
    )
    store.ensure_schema()

    batcher = EmbeddingBatcher(
        provider=provider,
        dim=embedding.dim,
        batch_size=embedding.batch_size,
        timeout=embedding.request_timeout,
        max_input_chars=embedding.max_input_chars,
        logger=logger.bind(component="embedding-batcher"),
    )
    states = IndexingStateMachine(
        store=store,
        logger=logger.bind(component="index-state"),
    )
    indexer = DocumentIndexer(
        store=store,
        batcher=batcher,
        states=states,
        max_len=config.chunking.max_len,
        overlap=config.chunking.overlap,
        logger=logger.bind(component="document-indexer"),
    )
    sync = BackfillSyncOrchestrator(
        store=store,
        batcher=batcher,
        batch_size=config.sync.batch_size,
        max_concurrency=config.sync.max_concurrency,
        logger=logger.bind(component="backfill-sync"),
    )
    retrieval = RetrievalEngine(
        store=store,
        batcher=batcher,
        default_k=config.retrieval.top_k,
        max_k=config.retrieval.max_top_k,
        logger=logger.bind(component="retrieval"),
    )

    logger.debug(
        "runtime-configured",
        provider=embedding.provider,
        model=embedding.model,
        dim=embedding.dim,
        database=str(store.path),
    )
    return IndexingRuntime(
        config=config,
        store=store,
        provider=provider,
        batcher=batcher,
        states=states,
        indexer=indexer,
        sync=sync,
        retrieval=retrieval,
        logger=logger,
    )
