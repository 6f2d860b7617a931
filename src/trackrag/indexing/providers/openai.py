"""Embeddings through the OpenAI API.

Inputs over the model's per-input token limit are refused up front and come
back as ``None`` slots. The rest are packed into as few requests as the
model's request limits allow. The SDK client is built with ``max_retries=0``:
a failed request raises one of the provider errors and the batcher decides
what happens to that sub-batch.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping, Sequence

import httpx
import tiktoken
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    RateLimitError,
)

from trackrag.core.logging import Logger
from trackrag.indexing.errors import (
    ProviderConfigurationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderRetryableError,
    ProviderTimeoutError,
)
from trackrag.indexing.models import EmbeddingVector

from . import EmbeddingProviderModel, ProviderInitContext

__all__ = ["OpenAIEmbeddingsProvider", "openai_provider_factory"]

PROVIDER_KEY = "openai"
DEFAULT_MODEL = "text-embedding-3-small"

_ENCODING_FALLBACK = "cl100k_base"
# Per-input overhead the API adds on top of the encoded tokens.
_TOKEN_OVERHEAD = 8


@dataclass(frozen=True, slots=True)
class ModelLimits:
    """Published width and request limits of one embeddings model."""

    dim: int
    input_tokens: int = 8_191
    request_inputs: int = 2_048
    request_tokens: int = 300_000


KNOWN_MODELS: Mapping[str, ModelLimits] = {
    "text-embedding-3-small": ModelLimits(dim=1_536),
    "text-embedding-3-large": ModelLimits(dim=3_072),
    "text-embedding-ada-002": ModelLimits(dim=1_536),
}
_UNKNOWN_MODEL_LIMITS = ModelLimits(dim=1)


def plan_requests(
    token_counts: Sequence[tuple[int, int]],
    *,
    max_inputs: int,
    max_tokens: int,
) -> Iterator[tuple[tuple[int, ...], int]]:
    """Group ``(index, tokens)`` pairs into requests within both limits.

    Yields ``(indices, total_tokens)`` in input order.

    Example:
        >>> list(plan_requests([(0, 5), (1, 5), (2, 5)], max_inputs=2, max_tokens=100))
        [((0, 1), 10), ((2,), 5)]
    """

    group: list[int] = []
    used = 0
    for index, tokens in token_counts:
        full = len(group) >= max_inputs or used + tokens > max_tokens
        if group and full:
            yield tuple(group), used
            group, used = [], 0
        group.append(index)
        used += tokens
    if group:
        yield tuple(group), used


def _timeout_seconds(config: Mapping[str, object]) -> float:
    raw = os.environ.get("OPENAI_TIMEOUT_SECONDS") or config.get("timeout") or 30.0
    try:
        seconds = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"OpenAI timeout must be a number (got {raw!r})") from exc
    if seconds <= 0:
        raise ValueError("OpenAI timeout must be positive")
    return seconds


def _classify(exc: Exception) -> type[ProviderError]:
    if isinstance(exc, RateLimitError):
        return ProviderRateLimitError
    if isinstance(exc, (APITimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError
    if isinstance(exc, (APIConnectionError, httpx.HTTPError)):
        return ProviderRetryableError
    if isinstance(exc, APIStatusError) and exc.status_code >= 500:
        return ProviderRetryableError
    return ProviderRequestError


class OpenAIEmbeddingsProvider:
    """:class:`EmbeddingProvider` backed by ``client.embeddings.create``."""

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
        client: OpenAI | None = None,
        now: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = logger
        self._settings = dict(config or {})
        self._client = client
        self._clock = now
        self._token_counts: dict[str, int] = {}
        self._counters = {"requests": 0, "failures": 0, "oversized": 0}

        self.model_name = str(self._settings.get("model") or DEFAULT_MODEL).strip()
        if not self.model_name:
            raise ValueError("model cannot be blank")
        self._limits = KNOWN_MODELS.get(self.model_name)

    @property
    def stats(self) -> Mapping[str, int]:
        return dict(self._counters)

    def describe_model(self) -> EmbeddingProviderModel:
        dim = self._settings.get("dim")
        if not isinstance(dim, int):
            if self._limits is None:
                raise ProviderConfigurationError(
                    (
                        f"Unknown OpenAI model {self.model_name!r}; "
                        "set embedding.dim."
                    ),
                    provider=PROVIDER_KEY,
                    model=self.model_name,
                )
            dim = self._limits.dim
        return EmbeddingProviderModel(
            provider=PROVIDER_KEY,
            name=self.model_name,
            dim=dim,
        )

    def is_available(self) -> bool:
        return self._client is not None or bool(os.environ.get("OPENAI_API_KEY"))

    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector | None]:
        slots: list[EmbeddingVector | None] = [None] * len(texts)
        limits = self._limits or _UNKNOWN_MODEL_LIMITS
        input_limit = self._input_limit(limits)

        accepted: list[tuple[int, int]] = []
        for index, text in enumerate(texts):
            tokens = self._estimate_tokens(text=text)
            if tokens <= input_limit:
                accepted.append((index, tokens))
                continue
            self._counters["oversized"] += 1
            self.logger.warning(
                "openai-input-too-large",
                model=self.model_name,
                index=index,
                tokens=tokens,
                limit=input_limit,
            )

        requests = plan_requests(
            accepted,
            max_inputs=limits.request_inputs,
            max_tokens=limits.request_tokens,
        )
        for indices, tokens in requests:
            vectors = self._request([texts[i] for i in indices], tokens=tokens)
            if len(vectors) != len(indices):
                raise ProviderRequestError(
                    (
                        f"OpenAI returned {len(vectors)} embeddings for "
                        f"{len(indices)} inputs."
                    ),
                    provider=PROVIDER_KEY,
                    model=self.model_name,
                )
            for index, vector in zip(indices, vectors):
                slots[index] = tuple(float(value) for value in vector)
        return slots

    def _input_limit(self, limits: ModelLimits) -> int:
        override = self._settings.get("max_input_tokens")
        if isinstance(override, int) and override > 0:
            return override
        return limits.input_tokens

    def _estimate_tokens(self, *, text: str) -> int:
        cached = self._token_counts.get(text)
        if cached is None:
            try:
                encoding = tiktoken.encoding_for_model(self.model_name)
            except KeyError:
                encoding = tiktoken.get_encoding(_ENCODING_FALLBACK)
            cached = _TOKEN_OVERHEAD + len(
                encoding.encode(text, disallowed_special=())
            )
            self._token_counts[text] = cached
        return cached

    def _client_or_raise(self) -> OpenAI:
        if self._client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise ProviderConfigurationError(
                    "OPENAI_API_KEY is not set.",
                    provider=PROVIDER_KEY,
                    model=self.model_name,
                )
            self._client = OpenAI(
                api_key=api_key,
                base_url=os.environ.get("OPENAI_BASE_URL"),
                organization=os.environ.get("OPENAI_ORG_ID"),
                timeout=_timeout_seconds(self._settings),
                max_retries=0,
            )
        return self._client

    def _request(self, inputs: list[str], *, tokens: int) -> list[list[float]]:
        client = self._client_or_raise()
        started = self._clock()
        try:
            response = client.embeddings.create(model=self.model_name, input=inputs)
        except Exception as exc:
            self._counters["failures"] += 1
            status = exc.status_code if isinstance(exc, APIStatusError) else None
            request_id = (
                exc.request_id if isinstance(exc, APIStatusError) else None
            )
            error_type = _classify(exc)
            self.logger.warning(
                "openai-embed-failed",
                model=self.model_name,
                inputs=len(inputs),
                error_type=exc.__class__.__name__,
                status_code=status,
                request_id=request_id,
                retryable=error_type.retryable,
            )
            raise error_type(
                str(exc) or exc.__class__.__name__,
                provider=PROVIDER_KEY,
                model=self.model_name,
                request_id=request_id,
                status_code=status,
            ) from exc

        self._counters["requests"] += 1
        self.logger.debug(
            "openai-embed-request",
            model=self.model_name,
            inputs=len(inputs),
            tokens=tokens,
            latency=self._clock() - started,
        )
        return [list(item.embedding) for item in response.data]


def openai_provider_factory(
    context: ProviderInitContext,
) -> OpenAIEmbeddingsProvider:
    return OpenAIEmbeddingsProvider(logger=context.logger, config=context.config)
