"""Tests for :mod:`trackrag.resources`."""

from __future__ import annotations

import tomllib

import pytest

from trackrag.resources import get_resource, read_resource_text


def test_get_resource_missing_file_raises() -> None:
    with pytest.raises(FileNotFoundError):
        get_resource("does-not-exist.toml")


def test_packaged_defaults_and_schema_are_readable() -> None:
    defaults = tomllib.loads(read_resource_text("trackrag.defaults.toml"))
    assert defaults["embedding"]["model"] == "text-embedding-3-small"
    assert defaults["sync"]["batch_size"] == 20

    schema = read_resource_text("schema.sql")
    assert "CREATE TABLE IF NOT EXISTS document_chunks" in schema
