"""Top-level package for :mod:`trackrag`.

The package exposes version metadata so the CLI and logs can report the
installed build.

Example:
    >>> from trackrag import __version__
    >>> __version__.split(".")[0]
    '0'
"""

from importlib import metadata

try:
    __version__ = metadata.version("trackrag")
except metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
