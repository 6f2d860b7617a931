"""Core utilities shared across :mod:`trackrag`.

Configuration loading, logging setup and workspace path resolution live here
so the indexing package stays free of bootstrap concerns.
"""

from __future__ import annotations

from .config import AppConfig, load_config
from .logging import configure_logging, get_logger
from .paths import WorkspacePaths, resolve_workspace

__all__ = [
    "AppConfig",
    "configure_logging",
    "get_logger",
    "load_config",
    "WorkspacePaths",
    "resolve_workspace",
]
