"""Typed error hierarchy for the indexing pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

__all__ = [
    "TrackragError",
    "ProviderError",
    "ProviderConfigurationError",
    "ProviderUnavailableError",
    "ProviderBatchFailureError",
    "ProviderRequestError",
    "ProviderRetryableError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "DimensionMismatchError",
    "AlreadyRunningError",
    "CrossScopeLeakError",
    "QueryNotEmbeddableError",
    "InvalidTransitionError",
    "DocumentNotFoundError",
    "StoreError",
]


class TrackragError(RuntimeError):
    """Base error raised by :mod:`trackrag`."""

    retryable: ClassVar[bool] = False


@dataclass(slots=True)
class ProviderError(TrackragError):
    """Base error raised by embedding providers."""

    message: str
    provider: str
    model: str
    request_id: str | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class ProviderConfigurationError(ProviderError):
    """Raised when the provider configuration is invalid."""


@dataclass(slots=True)
class ProviderUnavailableError(ProviderError):
    """Raised when the provider cannot serve requests right now."""

    retryable: ClassVar[bool] = True


@dataclass(slots=True)
class ProviderBatchFailureError(ProviderError):
    """Raised for one failed sub-batch; the remaining sub-batches still run."""

    batch_size: int = 0
    timed_out: bool = False


@dataclass(slots=True)
class ProviderRequestError(ProviderError):
    """Raised for non-retryable request errors."""


@dataclass(slots=True)
class ProviderRetryableError(ProviderError):
    """Raised for transport or server-side errors worth retrying later."""

    retryable: ClassVar[bool] = True


@dataclass(slots=True)
class ProviderRateLimitError(ProviderRetryableError):
    """Raised when the provider returns a rate limiting response."""


@dataclass(slots=True)
class ProviderTimeoutError(ProviderRetryableError):
    """Raised when a provider request times out."""


@dataclass(slots=True)
class DimensionMismatchError(TrackragError):
    """Raised when a vector's width differs from the configured dimension.

    This is a configuration fault: the vector is never padded or truncated.
    """

    message: str
    expected: int
    actual: int

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


class AlreadyRunningError(TrackragError):
    """Raised when a backfill sync is requested while one is in flight."""


@dataclass(slots=True)
class CrossScopeLeakError(TrackragError):
    """Raised when retrieval returns a chunk of another project."""

    message: str
    expected_project: str
    actual_project: str

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


class QueryNotEmbeddableError(TrackragError):
    """Raised when the provider rejects the query text itself."""


@dataclass(slots=True)
class InvalidTransitionError(TrackragError):
    """Raised when an index status change is not allowed."""

    message: str
    document_id: str
    current: str
    target: str

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


class DocumentNotFoundError(TrackragError):
    """Raised when a document row does not exist."""


class StoreError(TrackragError):
    """Raised when the relational store fails or a row is missing."""
