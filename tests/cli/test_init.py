"""Tests for :mod:`trackrag.cli.init`."""

from __future__ import annotations

import sqlite3
import tomllib
from pathlib import Path

from trackrag.cli.init import init_workspace
from trackrag.core.config import DEFAULTS_RESOURCE_NAME


def test_init_workspace_seeds_config_and_database(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"

    config = init_workspace(workspace=workspace)

    config_path = workspace / "trackrag.toml"
    assert config_path.exists()
    assert not (workspace / DEFAULTS_RESOURCE_NAME).exists()
    assert (workspace / "logs").is_dir()

    rendered = tomllib.loads(config_path.read_text(encoding="utf-8"))
    assert Path(rendered["workspace"]) == workspace.resolve()
    assert rendered["log_level"] == "INFO"
    assert rendered["embedding"]["provider"] == "openai"

    with sqlite3.connect(config.database_path) as connection:
        tables = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
        }
    assert {"projects", "tasks", "documents", "document_chunks"} <= tables


def test_init_workspace_keeps_existing_config_without_force(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    init_workspace(workspace=workspace)
    config_path = workspace / "trackrag.toml"
    config_path.write_text('log_level = "WARNING"\n', encoding="utf-8")

    config = init_workspace(workspace=workspace, provider="hashing")

    assert config.log_level == "WARNING"
    assert config.embedding.provider == "hashing"
    assert config_path.read_text(encoding="utf-8") == 'log_level = "WARNING"\n'


def test_init_workspace_force_rewrites_config(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    init_workspace(workspace=workspace)

    init_workspace(
        workspace=workspace,
        log_level="debug",
        env_overrides={"embedding": {"provider": "hashing"}},
        force=True,
    )

    rendered = tomllib.loads(
        (workspace / "trackrag.toml").read_text(encoding="utf-8")
    )
    assert rendered["log_level"] == "DEBUG"
    assert rendered["embedding"]["provider"] == "hashing"
