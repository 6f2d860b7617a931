"""Workspace path helpers for :mod:`trackrag`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

__all__ = [
    "CONFIG_FILENAME",
    "DATABASE_FILENAME",
    "WorkspacePaths",
    "resolve_workspace",
]

CONFIG_FILENAME = "trackrag.toml"
DATABASE_FILENAME = "trackrag.sqlite3"


@dataclass(frozen=True, slots=True)
class WorkspacePaths:
    """Resolved locations for a workspace instance.

    Example:
        >>> from pathlib import Path
        >>> paths = WorkspacePaths(
        ...     workspace=Path("/tmp/trackrag"),
        ...     config_file=Path("/tmp/trackrag/trackrag.toml"),
        ...     logs_dir=Path("/tmp/trackrag/logs"),
        ...     database_file=Path("/tmp/trackrag/trackrag.sqlite3"),
        ... )
        >>> paths.logs_dir.name
        'logs'
    """

    workspace: Path
    config_file: Path
    logs_dir: Path
    database_file: Path

    def iter_dirs(self) -> Iterable[Path]:
        """Yield the directories that must exist for the workspace."""

        yield from (self.workspace, self.logs_dir)

    def ensure(self) -> None:
        """Create the workspace directories if they are missing."""

        for directory in self.iter_dirs():
            directory.mkdir(parents=True, exist_ok=True)


def resolve_workspace(
    *,
    workspace_override: Path | None = None,
    env_override: Path | None = None,
) -> WorkspacePaths:
    """Resolve workspace locations.

    The CLI flag wins over ``TRACKRAG_WORKSPACE``, which wins over
    ``~/.trackrag``.

    Raises:
        ValueError: If the resolved workspace points to a regular file.
    """

    base = workspace_override or env_override or Path.home() / ".trackrag"
    raw = Path(base).expanduser()
    if not raw.is_absolute():
        raw = Path.cwd() / raw
    workspace = raw.resolve(strict=False)

    if workspace.exists() and workspace.is_file():
        raise ValueError(f"Workspace file path not allowed: {workspace}")

    return WorkspacePaths(
        workspace=workspace,
        config_file=workspace / CONFIG_FILENAME,
        logs_dir=workspace / "logs",
        database_file=workspace / DATABASE_FILENAME,
    )
