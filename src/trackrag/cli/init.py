"""Helpers for the ``trackrag init`` command."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from trackrag.core.config import (
    AppConfig,
    load_config,
    load_packaged_defaults,
    load_user_config,
    render_user_config,
)
from trackrag.core.paths import resolve_workspace
from trackrag.indexing.store.sqlite import SqliteStore


def init_workspace(
    *,
    workspace: Path,
    log_level: str | None = None,
    provider: str | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    force: bool = False,
) -> AppConfig:
    """Create the workspace, write ``trackrag.toml`` and the database schema.

    An existing ``trackrag.toml`` is kept (its values are honoured) unless
    ``force`` is set, in which case it is re-rendered from the resolved
    configuration.

    Example:
        >>> from pathlib import Path
        >>> config = init_workspace(workspace=Path("/tmp/trackrag-example"))
        >>> config.database_path.name
        'trackrag.sqlite3'
    """

    paths = resolve_workspace(workspace_override=workspace)
    paths.ensure()

    cli_overrides: dict[str, Any] = {"workspace": str(paths.workspace)}
    if log_level:
        cli_overrides["log_level"] = log_level
    if provider:
        cli_overrides["embedding"] = {"provider": provider}

    config = load_config(
        defaults=load_packaged_defaults(),
        user_config=load_user_config(paths.config_file),
        env_config=env_overrides,
        cli_overrides=cli_overrides,
    )

    if force or not paths.config_file.exists():
        paths.config_file.write_text(render_user_config(config), encoding="utf-8")

    store = SqliteStore(path=config.database_path, dim=config.embedding.dim)
    store.ensure_schema()

    return config


__all__ = ["init_workspace"]
