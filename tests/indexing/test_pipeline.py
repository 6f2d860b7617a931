"""Tests for :mod:`trackrag.indexing.pipeline`."""

from __future__ import annotations

import string

import pytest
from structlog import get_logger

from trackrag.indexing.chunker import chunk
from trackrag.indexing.errors import DimensionMismatchError
from trackrag.indexing.models import IndexState, IndexStatus
from trackrag.indexing.pipeline import DocumentIndexer

_BODY = "abc cab bac abba cabbage"


@pytest.fixture
def indexer(seeded_store, batcher, states) -> DocumentIndexer:
    return DocumentIndexer(
        store=seeded_store,
        batcher=batcher,
        states=states,
        max_len=10,
        overlap=2,
        logger=get_logger("test.indexer"),
    )


def _chunk_texts(text: str) -> list[str]:
    return [item.text for item in chunk(text, max_len=10, overlap=2)]


def test_index_document_embeds_every_chunk(indexer, seeded_store) -> None:
    state = indexer.index_document("d1", _BODY)

    expected = _chunk_texts(_BODY)
    assert state.status is IndexStatus.INDEXED
    assert state.chunk_count == len(expected)
    chunks = seeded_store.list_chunks("d1")
    assert [c.text for c in chunks] == expected
    assert all(c.embedding is not None for c in chunks)


def test_unchanged_content_is_a_noop(indexer, stub_provider) -> None:
    first = indexer.index_document("d1", _BODY)
    calls = len(stub_provider.calls)

    second = indexer.index_document("d1", _BODY)

    assert second.status is IndexStatus.INDEXED
    assert second.indexed_at == first.indexed_at
    assert len(stub_provider.calls) == calls


def test_changed_content_replaces_chunks(indexer, seeded_store) -> None:
    indexer.index_document("d1", _BODY)

    state = indexer.index_document("d1", "bbb")

    assert state.status is IndexStatus.INDEXED
    assert state.chunk_count == 1
    assert [c.text for c in seeded_store.list_chunks("d1")] == ["bbb"]


def test_partial_failure_marks_document_failed(
    indexer,
    seeded_store,
    stub_provider,
) -> None:
    texts = _chunk_texts(_BODY)
    stub_provider.fail_on.add(texts[0])

    state = indexer.index_document("d1", _BODY)

    embedded = len(texts) - 2
    assert state.status is IndexStatus.FAILED
    assert state.error_message == (
        f"{embedded} of {len(texts)} chunks embedded; failed=2"
    )
    stored = seeded_store.list_chunks("d1")
    assert len(stored) == len(texts)
    assert [c.embedding is None for c in stored[:2]] == [True, True]


def test_trailing_chunk_failures_report_two_of_five(
    indexer,
    seeded_store,
    stub_provider,
) -> None:
    body = string.ascii_letters[:40]
    texts = _chunk_texts(body)
    assert len(texts) == 5
    # Sub-batches of two: chunks 3-4 share a call, chunk 5 is alone.
    stub_provider.fail_on.update({texts[2], texts[4]})

    state = indexer.index_document("d1", body)

    assert state.status is IndexStatus.FAILED
    assert state.error_message == "2 of 5 chunks embedded; failed=3"
    assert state.chunk_count is None
    assert state.indexed_at is None
    stored = seeded_store.list_chunks("d1")
    assert [c.embedding is not None for c in stored] == [
        True,
        True,
        False,
        False,
        False,
    ]


def test_rejected_chunk_is_reported(indexer, stub_provider) -> None:
    texts = _chunk_texts(_BODY)
    stub_provider.reject.add(texts[-1].strip())

    state = indexer.index_document("d1", _BODY)

    assert state.status is IndexStatus.FAILED
    assert state.error_message.endswith("rejected=1")


def test_failed_document_is_retried_on_next_index(indexer, stub_provider) -> None:
    texts = _chunk_texts(_BODY)
    stub_provider.fail_on.add(texts[0])
    assert indexer.index_document("d1", _BODY).status is IndexStatus.FAILED

    stub_provider.fail_on.clear()
    state = indexer.index_document("d1", _BODY)

    assert state.status is IndexStatus.INDEXED
    assert state.error_message is None


def test_unavailable_provider_leaves_document_pending(
    indexer,
    seeded_store,
    stub_provider,
) -> None:
    stub_provider.available = False

    state = indexer.index_document("d1", _BODY)

    assert state.status is IndexStatus.PENDING
    assert seeded_store.list_chunks("d1") == []
    assert stub_provider.calls == []


def test_dimension_mismatch_fails_document_and_raises(
    indexer,
    seeded_store,
    stub_provider,
) -> None:
    stub_provider.vector_for = lambda text: (1.0,)

    with pytest.raises(DimensionMismatchError):
        indexer.index_document("d1", _BODY)

    state = seeded_store.get_index_state("d1")
    assert state.status is IndexStatus.FAILED
    assert "dimension" in state.error_message.lower()


def test_empty_document_is_indexed_with_no_chunks(indexer) -> None:
    state = indexer.index_document("d1", "   ")

    assert state.status is IndexStatus.INDEXED
    assert state.chunk_count == 0


def test_index_pending_uses_loader(indexer, seeded_store) -> None:
    seeded_store.add_document("d3", "p1", file_name="missing.md")
    bodies = {"plan.md": "abc", "notes.txt": "cab"}

    def _load(state: IndexState) -> str:
        name = seeded_store.document_file_name(state.document_id)
        if name not in bodies:
            raise FileNotFoundError(name)
        return bodies[name]

    outcomes = indexer.index_pending(_load)

    assert [(s.document_id, s.status) for s in outcomes] == [
        ("d1", IndexStatus.INDEXED),
        ("d2", IndexStatus.INDEXED),
        ("d3", IndexStatus.PENDING),
    ]
    scoped = indexer.index_pending(_load, project_id="p2")
    assert scoped == []
