from __future__ import annotations

from types import MethodType, SimpleNamespace
from typing import Iterable, Sequence

import httpx
import pytest
from openai import APIConnectionError, RateLimitError
from structlog import get_logger

from trackrag.indexing.errors import (
    ProviderConfigurationError,
    ProviderRateLimitError,
    ProviderRetryableError,
)
from trackrag.indexing.providers.openai import OpenAIEmbeddingsProvider


class _FakeEmbeddingsAPI:
    """Stub embeddings API returning scripted responses."""

    def __init__(self, script: Iterable[Sequence[Sequence[float]] | Exception]):
        self._script = list(script)
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def create(self, *, model: str, input: Sequence[str]) -> SimpleNamespace:
        self.calls.append((model, tuple(input)))
        if not self._script:
            raise AssertionError("unexpected OpenAI call")
        next_item = self._script.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        data = [SimpleNamespace(embedding=list(vector)) for vector in next_item]
        return SimpleNamespace(data=data)


class _FakeOpenAIClient:
    def __init__(self, script: Iterable[Sequence[Sequence[float]] | Exception]):
        self.embeddings = _FakeEmbeddingsAPI(script)


def _vector(value: float) -> tuple[float, ...]:
    return tuple(value for _ in range(1_536))


def _patch_token_estimator(
    provider: OpenAIEmbeddingsProvider,
    values: Iterable[int],
) -> None:
    iterator = iter(values)

    def _estimate(self: OpenAIEmbeddingsProvider, *, text: str) -> int:
        try:
            return next(iterator)
        except StopIteration:
            return 1

    provider._estimate_tokens = MethodType(_estimate, provider)


def _provider(client: _FakeOpenAIClient, **config) -> OpenAIEmbeddingsProvider:
    return OpenAIEmbeddingsProvider(
        logger=get_logger("test.openai.provider"),
        config=config,
        client=client,  # type: ignore[arg-type]
        now=lambda: 0.0,
    )


def test_openai_provider_returns_embeddings_in_order() -> None:
    client = _FakeOpenAIClient([(_vector(0.0), _vector(1.0))])
    provider = _provider(client)
    _patch_token_estimator(provider, [1, 1])

    vectors = provider.embed(["alpha", "beta"])

    assert vectors == [_vector(0.0), _vector(1.0)]
    assert client.embeddings.calls == [
        ("text-embedding-3-small", ("alpha", "beta")),
    ]
    assert provider.stats["requests"] == 1


def test_openai_provider_splits_requests_by_token_budget() -> None:
    client = _FakeOpenAIClient([(_vector(0.0),), (_vector(1.0), _vector(2.0))])
    provider = _provider(client, max_input_tokens=300_000)
    _patch_token_estimator(provider, [250_000, 80_000, 20_000])

    vectors = provider.embed(["alpha", "beta", "gamma"])

    assert len(vectors) == 3
    assert client.embeddings.calls == [
        ("text-embedding-3-small", ("alpha",)),
        ("text-embedding-3-small", ("beta", "gamma")),
    ]


def test_oversized_input_gets_an_empty_slot() -> None:
    client = _FakeOpenAIClient([(_vector(0.5),)])
    provider = _provider(client)
    _patch_token_estimator(provider, [10_000, 3])

    vectors = provider.embed(["oversize", "fits"])

    assert vectors == [None, _vector(0.5)]
    assert client.embeddings.calls == [("text-embedding-3-small", ("fits",))]
    assert provider.stats["oversized"] == 1


def test_rate_limit_is_translated_without_retrying() -> None:
    request = httpx.Request("POST", "https://example.com/embeddings")
    response = httpx.Response(status_code=429, request=request)
    client = _FakeOpenAIClient(
        [RateLimitError(message="slow down", response=response, body=None)]
    )
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with pytest.raises(ProviderRateLimitError) as exc_info:
        provider.embed(["alpha"])

    assert exc_info.value.status_code == 429
    assert exc_info.value.retryable is True
    assert len(client.embeddings.calls) == 1
    assert provider.stats["failures"] == 1


def test_connection_error_is_retryable() -> None:
    request = httpx.Request("POST", "https://example.com/embeddings")
    client = _FakeOpenAIClient([APIConnectionError(request=request)])
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with pytest.raises(ProviderRetryableError):
        provider.embed(["alpha"])


def test_availability_follows_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIEmbeddingsProvider(logger=get_logger("test.openai"))

    assert provider.is_available() is False
    _patch_token_estimator(provider, [1])
    with pytest.raises(ProviderConfigurationError):
        provider.embed(["alpha"])

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert provider.is_available() is True


def test_describe_model_uses_metadata_or_configured_dim() -> None:
    client = _FakeOpenAIClient([])

    assert _provider(client).describe_model().dim == 1536
    assert _provider(client, model="text-embedding-3-large").describe_model().dim == 3072
    custom = _provider(client, model="in-house-embed", dim=384).describe_model()
    assert custom.key == "openai:in-house-embed"

    with pytest.raises(ProviderConfigurationError):
        _provider(client, model="in-house-embed").describe_model()


def test_empty_input_makes_no_request() -> None:
    client = _FakeOpenAIClient([])

    assert _provider(client).embed([]) == []
