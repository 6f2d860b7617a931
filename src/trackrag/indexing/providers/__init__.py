"""Embedding provider contract and the key -> factory registry."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Protocol, Sequence, runtime_checkable

from trackrag.core.logging import Logger
from trackrag.indexing.models import EmbeddingVector

__all__ = [
    "EmbeddingProviderModel",
    "EmbeddingProvider",
    "ProviderFactory",
    "ProviderInitContext",
    "ProviderRegistry",
    "ProviderRegistryError",
    "ProviderNotRegisteredError",
    "register_builtin_providers",
    "create_default_provider_registry",
]


@dataclass(frozen=True, slots=True)
class EmbeddingProviderModel:
    """Identity and vector width of the model a provider serves."""

    provider: str
    name: str
    dim: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider", self.provider.strip().lower())
        object.__setattr__(self, "name", self.name.strip())
        if not (self.provider and self.name):
            raise ValueError(f"incomplete model identity: {self!r}")
        if self.dim < 1:
            raise ValueError(f"embedding dim must be positive, got {self.dim}")

    @property
    def key(self) -> str:
        """Canonical ``provider:name`` identity."""

        return f"{self.provider}:{self.name}"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Boundary contract for embedding providers."""

    def describe_model(self) -> EmbeddingProviderModel:
        """Return the model served by this provider."""

    def is_available(self) -> bool:
        """Return ``True`` when requests can be issued (credentials present)."""

    def embed(self, texts: Sequence[str]) -> list[EmbeddingVector | None]:
        """Embed ``texts`` in one call.

        Returns one slot per input in input order. A slot is ``None`` when the
        provider refuses that input (for example it exceeds the token limit).
        Transport and server failures raise instead.
        """


@dataclass(frozen=True, slots=True)
class ProviderInitContext:
    """What a factory gets: a bound logger and a read-only config mapping."""

    logger: Logger
    config: Mapping[str, object] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", MappingProxyType(dict(self.config or {})))


ProviderFactory = Callable[[ProviderInitContext], EmbeddingProvider]


class ProviderRegistryError(RuntimeError):
    """Raised for duplicate or malformed registrations."""


class ProviderNotRegisteredError(ProviderRegistryError):
    """Raised when no factory is registered under a key."""


def _provider_key(key: str) -> str:
    cleaned = key.strip().lower()
    if not cleaned:
        raise ValueError("provider key cannot be empty")
    return cleaned


class ProviderRegistry:
    """Provider factories by case-insensitive key (``"openai"``, ``"hashing"``)."""

    def __init__(
        self,
        factories: Mapping[str, ProviderFactory] | None = None,
    ) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        for key, factory in (factories or {}).items():
            self.register(key, factory)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.strip().lower() in self._factories

    def register(self, key: str, factory: ProviderFactory) -> None:
        name = _provider_key(key)
        if name in self._factories:
            raise ProviderRegistryError(f"provider {name!r} is already registered")
        self._factories[name] = factory

    def get_factory(self, key: str) -> ProviderFactory:
        name = _provider_key(key)
        factory = self._factories.get(name)
        if factory is None:
            choices = ", ".join(sorted(self._factories)) or "none"
            raise ProviderNotRegisteredError(
                f"unknown embedding provider {name!r}; choose from: {choices}"
            )
        return factory

    def create(
        self,
        key: str,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
    ) -> EmbeddingProvider:
        context = ProviderInitContext(logger=logger, config=config)
        return self.get_factory(key)(context)

    def snapshot(self) -> Mapping[str, ProviderFactory]:
        return MappingProxyType(dict(self._factories))


# Lazy imports keep the OpenAI SDK and tiktoken unloaded unless selected.
def _openai_factory(context: ProviderInitContext) -> EmbeddingProvider:
    from .openai import openai_provider_factory

    return openai_provider_factory(context)


def _hashing_factory(context: ProviderInitContext) -> EmbeddingProvider:
    from .hashing import hashing_provider_factory

    return hashing_provider_factory(context)


BUILTIN_FACTORIES: Mapping[str, ProviderFactory] = MappingProxyType(
    {"openai": _openai_factory, "hashing": _hashing_factory}
)


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    """Add the built-in factories that ``registry`` does not already have."""

    for key, factory in BUILTIN_FACTORIES.items():
        if key not in registry:
            registry.register(key, factory)
    return registry


def create_default_provider_registry() -> ProviderRegistry:
    return ProviderRegistry(BUILTIN_FACTORIES)
