"""Fixed-size overlapping text windows.

A document of length ``n`` is split into windows ``[i, i + max_len)`` where
``i`` advances by ``max_len - overlap``. The last window may be shorter. The
walk stops at the first window that reaches the end of the text, so the
sequence is always finite and removing each chunk's leading ``overlap``
characters (all but the first) and concatenating gives back the source text.

Example:
    >>> chunks = list(chunk("abcdefghij", max_len=4, overlap=1))
    >>> [c.text for c in chunks]
    ['abcd', 'defg', 'ghij']
    >>> reconstruct(chunks, overlap=1)
    'abcdefghij'
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator

from trackrag.indexing.models import Chunk

__all__ = ["ChunkSequence", "chunk", "reconstruct"]


@dataclass(frozen=True, slots=True)
class ChunkSequence:
    """Lazy, restartable view over the chunks of one text."""

    text: str
    max_len: int
    overlap: int
    document_id: str = ""

    @property
    def step(self) -> int:
        return self.max_len - self.overlap

    def __iter__(self) -> Iterator[Chunk]:
        if not self.text.strip():
            return
        length = len(self.text)
        start = 0
        ordinal = 0
        while True:
            end = min(start + self.max_len, length)
            yield Chunk(
                document_id=self.document_id,
                ordinal=ordinal,
                text=self.text[start:end],
                start=start,
            )
            if end >= length:
                return
            start += self.step
            ordinal += 1

    def __len__(self) -> int:
        if not self.text.strip():
            return 0
        remainder = len(self.text) - self.max_len
        if remainder <= 0:
            return 1
        return 1 + math.ceil(remainder / self.step)


def chunk(
    text: str,
    max_len: int,
    overlap: int,
    *,
    document_id: str = "",
) -> ChunkSequence:
    """Split ``text`` into overlapping windows.

    Raises:
        ValueError: If ``overlap`` is negative or not smaller than
            ``max_len``.
    """

    if overlap < 0:
        raise ValueError(f"overlap must be >= 0 (got {overlap})")
    if overlap >= max_len:
        raise ValueError(
            f"overlap must be smaller than max_len ({overlap} >= {max_len})"
        )
    return ChunkSequence(
        text=text,
        max_len=max_len,
        overlap=overlap,
        document_id=document_id,
    )


def reconstruct(chunks: Iterable[Chunk], overlap: int) -> str:
    """Rebuild the source text from chunks in ordinal order."""

    parts: list[str] = []
    for item in sorted(chunks, key=lambda c: c.ordinal):
        parts.append(item.text if item.ordinal == 0 else item.text[overlap:])
    return "".join(parts)
