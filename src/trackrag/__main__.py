"""Console-script entry point for :mod:`trackrag`."""

from __future__ import annotations

from trackrag.cli import create_app


def main() -> None:
    """Run the ``trackrag`` CLI."""

    app = create_app()
    app(prog_name="trackrag")


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    main()


__all__ = ["main"]
