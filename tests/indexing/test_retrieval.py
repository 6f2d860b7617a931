"""Tests for :mod:`trackrag.indexing.retrieval`."""

from __future__ import annotations

import pytest
from structlog import get_logger

from trackrag.indexing.errors import (
    CrossScopeLeakError,
    ProviderUnavailableError,
    QueryNotEmbeddableError,
)
from trackrag.indexing.models import Chunk, IndexStatus, RetrievalResult
from trackrag.indexing.retrieval import RetrievalEngine


@pytest.fixture
def engine(seeded_store, batcher) -> RetrievalEngine:
    seeded_store.replace_chunks(
        "d1",
        [
            Chunk("d1", 0, "aaaa", 0, (4.0, 0.0, 0.0, 1.0)),
            Chunk("d1", 1, "bbbb", 4, (0.0, 4.0, 0.0, 1.0)),
            Chunk("d1", 2, "cccc", 8, (0.0, 0.0, 4.0, 1.0)),
        ],
    )
    seeded_store.replace_chunks("d2", [Chunk("d2", 0, "aaaa", 0, (4.0, 0.0, 0.0, 1.0))])
    return RetrievalEngine(
        store=seeded_store,
        batcher=batcher,
        default_k=2,
        max_k=3,
        logger=get_logger("test.retrieval"),
    )


def test_retrieve_returns_best_chunks_of_the_project(engine) -> None:
    results = engine.retrieve("p1", "bbbb")

    # aaaa and cccc tie on score; the lower ordinal wins.
    assert [r.chunk.text for r in results] == ["bbbb", "aaaa"]
    assert results[0].score == pytest.approx(1.0)
    assert all(r.project_id == "p1" for r in results)
    assert results[0].score >= results[1].score


def test_k_above_the_chunk_count_returns_every_chunk(seeded_store, batcher) -> None:
    seeded_store.replace_chunks(
        "d1",
        [
            Chunk("d1", ordinal, "ab", 2 * ordinal, (1.0, float(ordinal), 0.0, 1.0))
            for ordinal in range(5)
        ],
    )
    engine = RetrievalEngine(
        store=seeded_store,
        batcher=batcher,
        max_k=10,
        logger=get_logger("test.retrieval"),
    )

    results = engine.retrieve("p1", "a", k=10)

    assert sorted(r.chunk.ordinal for r in results) == [0, 1, 2, 3, 4]


def test_k_above_the_maximum_is_rejected(engine) -> None:
    with pytest.raises(ValueError, match="k must be <= 3"):
        engine.retrieve("p1", "a", k=10)

    assert len(engine.retrieve("p2", "a", k=3)) == 1


def test_k_below_one_is_rejected(engine) -> None:
    with pytest.raises(ValueError):
        engine.retrieve("p1", "a", k=0)


def test_empty_query_is_not_embeddable(engine, stub_provider) -> None:
    with pytest.raises(QueryNotEmbeddableError):
        engine.retrieve("p1", "   ")
    assert stub_provider.calls == []


def test_failed_query_embedding_reports_unavailable(engine, stub_provider) -> None:
    stub_provider.fail_on.add("boom")

    with pytest.raises(ProviderUnavailableError):
        engine.retrieve("p1", "boom")

    stub_provider.available = False
    with pytest.raises(ProviderUnavailableError):
        engine.retrieve("p1", "abc")


def test_foreign_chunk_from_store_raises(engine, monkeypatch) -> None:
    leaked = RetrievalResult(
        chunk=Chunk("d2", 0, "aaaa", 0),
        score=1.0,
        project_id="p2",
    )
    monkeypatch.setattr(
        type(engine.store),
        "nearest_neighbors",
        lambda self, project_id, vector, k: [leaked],
    )

    with pytest.raises(CrossScopeLeakError) as exc_info:
        engine.retrieve("p1", "a")

    assert exc_info.value.actual_project == "p2"


def test_index_health_reports_project_counts(engine) -> None:
    health = engine.index_health("p1")

    assert health.counts[IndexStatus.PENDING] == 1
    assert health.complete is False
    assert health.to_mapping()["pending"] == 1
