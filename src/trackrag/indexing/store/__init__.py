"""Vector store boundary and its SQLite implementation."""

from __future__ import annotations

from .base import VectorStore
from .sqlite import SqliteStore

__all__ = ["SqliteStore", "VectorStore"]
