"""Per-kind text used for coarse project, task and document embeddings."""

from __future__ import annotations

from typing import Any, Callable, Mapping

from trackrag.indexing.models import SourceKind

__all__ = [
    "FIELD_SEPARATOR",
    "Summarizer",
    "combine_text_fields",
    "default_summarizers",
]

FIELD_SEPARATOR = " - "

Summarizer = Callable[[Mapping[str, Any]], str]


def combine_text_fields(*fields: str | None) -> str:
    """Join the non-blank, trimmed fields with ``" - "``.

    Example:
        >>> combine_text_fields("Roadmap", None, "  Q3 goals ")
        'Roadmap - Q3 goals'
    """

    parts = [value.strip() for value in fields if value and value.strip()]
    return FIELD_SEPARATOR.join(parts)


def _title_and_description(row: Mapping[str, Any]) -> str:
    return combine_text_fields(row["title"], row["description"])


def _document_summary(row: Mapping[str, Any]) -> str:
    return combine_text_fields(row["file_name"], row["description"])


def default_summarizers() -> dict[SourceKind, Summarizer]:
    return {
        SourceKind.PROJECT: _title_and_description,
        SourceKind.TASK: _title_and_description,
        SourceKind.DOCUMENT: _document_summary,
    }
