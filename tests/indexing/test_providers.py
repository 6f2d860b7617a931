"""Tests for the provider registry and the hashing provider."""

from __future__ import annotations

import math

import pytest
from structlog import get_logger

from trackrag.indexing.providers import (
    EmbeddingProvider,
    ProviderNotRegisteredError,
    ProviderRegistry,
    ProviderRegistryError,
    create_default_provider_registry,
)
from trackrag.indexing.providers.hashing import HashingEmbeddingsProvider


def test_default_registry_knows_builtin_providers() -> None:
    registry = create_default_provider_registry()

    assert set(registry.snapshot()) == {"openai", "hashing"}


def test_registry_rejects_duplicates_and_unknown_keys() -> None:
    registry = create_default_provider_registry()

    with pytest.raises(ProviderRegistryError):
        registry.register("OpenAI", lambda context: None)  # type: ignore[arg-type,return-value]
    with pytest.raises(ProviderNotRegisteredError) as exc_info:
        registry.get_factory("cohere")
    assert "hashing" in str(exc_info.value)


def test_registry_creates_provider_with_config() -> None:
    registry = ProviderRegistry()
    registry.register(
        "hashing",
        lambda context: HashingEmbeddingsProvider(
            logger=context.logger,
            config=context.config,
        ),
    )

    provider = registry.create(
        " Hashing ",
        logger=get_logger("test.registry"),
        config={"dim": 32},
    )

    assert isinstance(provider, EmbeddingProvider)
    assert provider.describe_model().dim == 32


def test_hashing_vectors_are_deterministic_unit_vectors() -> None:
    provider = HashingEmbeddingsProvider(
        logger=get_logger("test.hashing"),
        config={"dim": 64},
    )

    first, second, empty = provider.embed(
        ["Launch checklist", "launch   CHECKLIST", "!!!"]
    )

    assert first == second
    assert len(first) == 64
    assert math.isclose(math.fsum(v * v for v in first), 1.0, rel_tol=1e-9)
    assert empty is None
    assert provider.is_available() is True
    assert provider.describe_model().key == "hashing:hashing-v1"


def test_hashing_provider_rejects_bad_dim() -> None:
    with pytest.raises(ValueError):
        HashingEmbeddingsProvider(logger=get_logger("test.hashing"), config={"dim": 0})
