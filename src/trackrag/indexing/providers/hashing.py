"""Deterministic offline embeddings built from hashed token counts.

Useful when no API key is configured: vectors are stable across runs, so
sync and retrieval behave the same way they do against a hosted model, just
with lexical rather than semantic similarity.
"""

from __future__ import annotations

import hashlib
import re
from typing import Mapping, Sequence

import numpy as np

from trackrag.core.logging import Logger
from trackrag.indexing.models import EmbeddingVector

from . import EmbeddingProviderModel, ProviderInitContext

__all__ = ["HashingEmbeddingsProvider", "hashing_provider_factory"]

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)
_DEFAULT_DIM = 256
_MODEL_NAME = "hashing-v1"


class HashingEmbeddingsProvider:
    """Feature-hashing embedder; always available."""

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
    ) -> None:
        self.logger = logger
        settings = dict(config or {})
        dim = settings.get("dim", _DEFAULT_DIM)
        if not isinstance(dim, int) or dim < 1:
            raise ValueError(f"dim must be a positive integer (got {dim!r})")
        self._dim = dim

    def describe_model(self) -> EmbeddingProviderModel:
        return EmbeddingProviderModel(
            provider="hashing",
            name=_MODEL_NAME,
            dim=self._dim,
        )

    def is_available(self) -> bool:
        return True

    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector | None]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> EmbeddingVector | None:
        tokens = _TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            return None
        vector = np.zeros(self._dim, dtype=np.float64)
        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8)
            value = int.from_bytes(digest.digest(), "little")
            bucket = value % self._dim
            sign = 1.0 if (value >> 63) & 1 == 0 else -1.0
            vector[bucket] += sign
        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            # Signed hits cancelled out; use a fixed unit vector.
            vector[0] = 1.0
            norm = 1.0
        return tuple(float(value) for value in vector / norm)


def hashing_provider_factory(
    context: ProviderInitContext,
) -> HashingEmbeddingsProvider:
    """Factory registered with the provider registry."""

    return HashingEmbeddingsProvider(logger=context.logger, config=context.config)
