"""Tests for :mod:`trackrag.core.paths`."""

from __future__ import annotations

from pathlib import Path

import pytest

from trackrag.core.paths import (
    CONFIG_FILENAME,
    DATABASE_FILENAME,
    resolve_workspace,
)


def test_resolve_workspace_defaults_to_home_dot_trackrag(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("HOME", tmp_path.as_posix())
    monkeypatch.setenv("USERPROFILE", tmp_path.as_posix())

    paths = resolve_workspace()

    expected = (tmp_path / ".trackrag").resolve(strict=False)
    assert paths.workspace == expected
    assert paths.config_file == expected / CONFIG_FILENAME
    assert paths.logs_dir == expected / "logs"
    assert paths.database_file == expected / DATABASE_FILENAME


def test_resolve_workspace_prefers_cli_override(tmp_path: Path) -> None:
    paths = resolve_workspace(
        workspace_override=tmp_path / "from-cli",
        env_override=tmp_path / "from-env",
    )

    assert paths.workspace == (tmp_path / "from-cli").resolve(strict=False)


def test_resolve_workspace_uses_env_override(tmp_path: Path) -> None:
    paths = resolve_workspace(env_override=tmp_path / "from-env")

    assert paths.workspace == (tmp_path / "from-env").resolve(strict=False)


def test_resolve_workspace_supports_relative_paths(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(tmp_path)

    paths = resolve_workspace(workspace_override=Path("relative"))

    assert paths.workspace == (tmp_path / "relative").resolve(strict=False)


def test_resolve_workspace_rejects_files(tmp_path: Path) -> None:
    target = tmp_path / "not-a-dir"
    target.write_text("content", encoding="utf-8")

    with pytest.raises(ValueError):
        resolve_workspace(workspace_override=target)


def test_ensure_creates_workspace_and_logs(tmp_path: Path) -> None:
    paths = resolve_workspace(workspace_override=tmp_path / "ws")

    paths.ensure()

    assert paths.workspace.is_dir()
    assert paths.logs_dir.is_dir()
    assert not paths.database_file.exists()
