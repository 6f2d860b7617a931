"""Shared pytest fixtures for the indexing tests."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest
from structlog import get_logger

from trackrag.indexing.batcher import EmbeddingBatcher
from trackrag.indexing.providers import EmbeddingProviderModel
from trackrag.indexing.state import IndexingStateMachine
from trackrag.indexing.store.sqlite import SqliteStore

STUB_DIM = 4


def _letter_vector(text: str) -> tuple[float, ...]:
    """Small deterministic vector: counts of ``a``, ``b``, ``c`` plus a bias."""

    lowered = text.lower()
    return (
        float(lowered.count("a")),
        float(lowered.count("b")),
        float(lowered.count("c")),
        1.0,
    )


class StubProvider:
    """Scriptable in-memory embedding provider."""

    def __init__(
        self,
        *,
        dim: int = STUB_DIM,
        vector_for: Callable[[str], Sequence[float] | None] = _letter_vector,
    ) -> None:
        self.dim = dim
        self.vector_for = vector_for
        self.available = True
        self.fail_on: set[str] = set()
        self.reject: set[str] = set()
        self.block_on: set[str] = set()
        self.release = threading.Event()
        self.calls: list[tuple[str, ...]] = []

    def describe_model(self) -> EmbeddingProviderModel:
        return EmbeddingProviderModel(provider="stub", name="stub-v1", dim=self.dim)

    def is_available(self) -> bool:
        return self.available

    def embed(self, texts: Sequence[str]) -> list[tuple[float, ...] | None]:
        self.calls.append(tuple(texts))
        if any(text in self.block_on for text in texts):
            self.release.wait(timeout=5.0)
        if any(text in self.fail_on for text in texts):
            raise RuntimeError("stub provider failure")
        results: list[tuple[float, ...] | None] = []
        for text in texts:
            if text in self.reject:
                results.append(None)
                continue
            vector = self.vector_for(text)
            results.append(None if vector is None else tuple(vector))
        return results


def _clear_root_handlers() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def reset_logging_state() -> Iterator[None]:
    """Ensure each test runs with a clean logging configuration."""

    _clear_root_handlers()
    yield
    _clear_root_handlers()


@pytest.fixture
def stub_provider() -> Iterator[StubProvider]:
    provider = StubProvider()
    try:
        yield provider
    finally:
        provider.release.set()


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    sqlite_store = SqliteStore(
        path=tmp_path / "trackrag.sqlite3",
        dim=STUB_DIM,
        logger=get_logger("test.store"),
    )
    sqlite_store.ensure_schema()
    return sqlite_store


@pytest.fixture
def batcher(stub_provider: StubProvider) -> EmbeddingBatcher:
    return EmbeddingBatcher(
        provider=stub_provider,
        dim=STUB_DIM,
        batch_size=2,
        timeout=2.0,
        logger=get_logger("test.batcher"),
    )


@pytest.fixture
def states(store: SqliteStore) -> IndexingStateMachine:
    return IndexingStateMachine(store=store, logger=get_logger("test.state"))


@pytest.fixture
def seeded_store(store: SqliteStore) -> SqliteStore:
    """Two projects with one task and one document each."""

    store.add_project("p1", title="Apollo", description="Moon program")
    store.add_project("p2", title="Gemini", description=None)
    store.add_task("t1", "p1", title="Launch", description="Countdown checks")
    store.add_task("t2", "p2", title="Dock", description=None)
    store.add_document("d1", "p1", file_name="plan.md", description="Flight plan")
    store.add_document("d2", "p2", file_name="notes.txt", description=None)
    return store
