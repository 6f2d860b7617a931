"""Configuration models and loaders for :mod:`trackrag`."""

from __future__ import annotations

import os
from collections.abc import Mapping as MappingABC
from enum import StrEnum
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, field_validator, model_validator

from trackrag.core.paths import DATABASE_FILENAME
from trackrag.resources import read_resource_text

DEFAULTS_RESOURCE_NAME = "trackrag.defaults.toml"

ENV_LOG_LEVEL = "TRACKRAG_LOG_LEVEL"
ENV_DATABASE = "TRACKRAG_DATABASE"
ENV_PROVIDER = "TRACKRAG_PROVIDER"

_SECTIONS = ("embedding", "chunking", "store", "sync", "retrieval")
_HEADER_LINES = (
    "Generated by trackrag init",
    "Precedence: CLI flags > env vars > trackrag.toml > defaults",
    "Environment overrides:",
    f"  {ENV_LOG_LEVEL}=info",
    f"  {ENV_DATABASE}=/path/to/db.sqlite3",
    f"  {ENV_PROVIDER}=hashing",
)


class VectorMetric(StrEnum):
    """Similarity metric used when ranking stored vectors."""

    COSINE = "cosine"
    L2 = "l2"


class EmbeddingSettings(BaseModel):
    """Embedding provider and batching configuration."""

    provider: str = Field(
        default="openai",
        description="Registry key of the embedding provider.",
    )
    model: str = Field(
        default="text-embedding-3-small",
        description="Model name passed to the provider.",
    )
    dim: int = Field(
        default=1536,
        ge=1,
        description="Vector width every stored embedding must have.",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum inputs sent in a single provider call.",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds before a provider call is treated as failed.",
    )
    max_input_chars: int = Field(
        default=8000,
        ge=1,
        description="Inputs are truncated to this many characters.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
        "protected_namespaces": (),
    }

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("embedding.provider cannot be blank")
        return normalized


class ChunkingSettings(BaseModel):
    """Fixed-window chunking parameters."""

    max_len: int = Field(
        default=1000,
        ge=1,
        description="Maximum characters per chunk.",
    )
    overlap: int = Field(
        default=200,
        ge=0,
        description="Characters shared between consecutive chunks.",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingSettings":
        if self.overlap >= self.max_len:
            raise ValueError("chunking.overlap must be smaller than max_len")
        return self


class StoreSettings(BaseModel):
    """Vector store configuration."""

    metric: VectorMetric = Field(
        default=VectorMetric.COSINE,
        description="Similarity metric for nearest-neighbour queries.",
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Backfill sync configuration."""

    batch_size: int = Field(
        default=20,
        ge=1,
        description="Rows fetched and embedded per sync sub-batch.",
    )
    max_concurrency: int = Field(
        default=3,
        ge=1,
        description="Source kinds synchronized in parallel.",
    )

    model_config = {"frozen": True}


class RetrievalSettings(BaseModel):
    """Retrieval defaults."""

    top_k: int = Field(default=5, ge=1, description="Default result count.")
    max_top_k: int = Field(
        default=50,
        ge=1,
        description="Upper bound applied to caller-supplied k.",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetrievalSettings":
        if self.top_k > self.max_top_k:
            raise ValueError("retrieval.top_k cannot exceed max_top_k")
        return self


class AppConfig(BaseModel):
    """Root configuration for the :mod:`trackrag` application."""

    workspace: Path = Field(
        default_factory=lambda: Path("~/.trackrag").expanduser(),
        description="Workspace root holding config, logs and the database.",
    )
    log_level: str = Field(
        default="INFO",
        description="Default logging level for the application runtime.",
    )
    database: Path | None = Field(
        default=None,
        description="SQLite database path; defaults inside the workspace.",
    )
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @model_validator(mode="after")
    def _post_process(self) -> "AppConfig":
        object.__setattr__(self, "log_level", self.log_level.upper())
        object.__setattr__(self, "workspace", self.workspace.expanduser())
        if self.database is not None:
            object.__setattr__(self, "database", self.database.expanduser())
        return self

    @property
    def database_path(self) -> Path:
        """Return the configured database path or the workspace default."""

        if self.database is None:
            return self.workspace / DATABASE_FILENAME
        if self.database.is_absolute():
            return self.database
        return self.workspace / self.database


def read_packaged_defaults_text() -> str:
    """Return the raw packaged defaults TOML content.

    Example:
        >>> read_packaged_defaults_text().startswith("#")
        True
    """

    return read_resource_text(DEFAULTS_RESOURCE_NAME)


def load_packaged_defaults() -> dict[str, Any]:
    """Load the packaged defaults as a plain dictionary.

    Example:
        >>> load_packaged_defaults()["embedding"]["dim"]
        1536
    """

    return tomllib.loads(read_packaged_defaults_text())


def load_user_config(path: Path) -> dict[str, Any]:
    """Parse a user ``trackrag.toml``; a missing file yields no overrides."""

    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return the config layer derived from ``TRACKRAG_*`` variables."""

    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if env.get(ENV_LOG_LEVEL):
        overrides["log_level"] = env[ENV_LOG_LEVEL]
    if env.get(ENV_DATABASE):
        overrides["database"] = env[ENV_DATABASE]
    if env.get(ENV_PROVIDER):
        overrides["embedding"] = {"provider": env[ENV_PROVIDER]}
    return overrides


def _deep_merge(lower: Mapping[str, Any], upper: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay ``upper`` on ``lower``; nested tables merge key by key."""

    result = dict(lower)
    for key, value in upper.items():
        below = result.get(key)
        if isinstance(below, MappingABC) and isinstance(value, MappingABC):
            value = _deep_merge(below, value)
        result[key] = value
    return result


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Merge the layers lowest first and validate the result.

    Precedence, highest wins: ``cli_overrides``, ``env_config`` (see
    :func:`env_overrides`), ``user_config`` (``trackrag.toml``), ``defaults``.

    Raises:
        pydantic.ValidationError: If the merged values are invalid.
    """

    merged: dict[str, Any] = {}
    for layer in (defaults, user_config, env_config, cli_overrides):
        merged = _deep_merge(merged, layer or {})
    return AppConfig.model_validate(merged)


def render_user_config(
    config: AppConfig,
    *,
    include_defaults: bool = True,
) -> str:
    """Render a ``trackrag.toml`` for users to customize."""

    document = tomlkit.document()
    if include_defaults:
        for line in _HEADER_LINES:
            document.add(tomlkit.comment(line))
        document.add(tomlkit.nl())

    data = config.model_dump(mode="json", exclude_none=True)
    for key in ("workspace", "log_level", "database"):
        if key in data:
            document[key] = data[key]
    for section in _SECTIONS:
        table = tomlkit.table()
        for name, value in data[section].items():
            table[name] = value
        document[section] = table
    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "ChunkingSettings",
    "DEFAULTS_RESOURCE_NAME",
    "ENV_DATABASE",
    "ENV_LOG_LEVEL",
    "ENV_PROVIDER",
    "EmbeddingSettings",
    "RetrievalSettings",
    "StoreSettings",
    "SyncSettings",
    "VectorMetric",
    "env_overrides",
    "load_config",
    "load_packaged_defaults",
    "load_user_config",
    "read_packaged_defaults_text",
    "render_user_config",
]
