"""Tests for :mod:`trackrag.indexing.state`."""

from __future__ import annotations

import pytest

from trackrag.indexing.errors import InvalidTransitionError
from trackrag.indexing.models import IndexStatus
from trackrag.indexing.state import content_digest


def test_happy_path_reaches_indexed(seeded_store, states) -> None:
    states.start("d1", content_hash=content_digest("body"))
    state = states.mark_indexed("d1", chunk_count=3)

    assert state.status is IndexStatus.INDEXED
    assert state.chunk_count == 3
    assert state.indexed_at is not None
    assert state.error_message is None
    assert state.content_hash == content_digest("body")


def test_failed_document_can_be_resubmitted(seeded_store, states) -> None:
    states.start("d1")
    failed = states.mark_failed("d1", "provider exploded")
    assert failed.status is IndexStatus.FAILED
    assert failed.error_message == "provider exploded"

    again = states.resubmit("d1")

    assert again.status is IndexStatus.PENDING
    assert again.error_message is None


@pytest.mark.parametrize(
    "move",
    [
        lambda machine: machine.mark_indexed("d1", chunk_count=1),
        lambda machine: machine.mark_failed("d1", "nope"),
        lambda machine: machine.resubmit("d1"),
    ],
)
def test_illegal_moves_from_pending_raise(seeded_store, states, move) -> None:
    with pytest.raises(InvalidTransitionError) as exc_info:
        move(states)

    assert exc_info.value.current == "PENDING"
    assert seeded_store.get_index_state("d1").status is IndexStatus.PENDING


def test_second_start_loses(seeded_store, states) -> None:
    states.start("d1")

    with pytest.raises(InvalidTransitionError):
        states.start("d1")


def test_resolve_marks_partial_runs_failed(seeded_store, states) -> None:
    states.start("d1")

    state = states.resolve("d1", embedded=2, total=3, detail="failed=1")

    assert state.status is IndexStatus.FAILED
    assert state.error_message == "2 of 3 chunks embedded; failed=1"


def test_resolve_with_every_chunk_embedded_marks_indexed(
    seeded_store,
    states,
) -> None:
    states.start("d1")

    assert states.resolve("d1", embedded=0, total=0).status is IndexStatus.INDEXED


def test_content_changed_reopens_indexed_document(seeded_store, states) -> None:
    states.start("d1", content_hash=content_digest("v1"))
    states.mark_indexed("d1", chunk_count=1)

    assert states.content_changed("d1", "v1") is False
    assert states.content_changed("d1", "v2") is True

    state = states.state("d1")
    assert state.status is IndexStatus.PENDING
    assert state.content_hash == content_digest("v2")


def test_content_changed_ignores_documents_in_flight(seeded_store, states) -> None:
    assert states.content_changed("d1", "anything") is False

    states.start("d1")
    assert states.content_changed("d1", "anything") is False
    assert states.state("d1").status is IndexStatus.PROCESSING
