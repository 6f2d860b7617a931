"""Command-line interface for :mod:`trackrag`.

Example:
    >>> import typer
    >>> from trackrag.cli import create_app
    >>> isinstance(create_app(), typer.Typer)
    True
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from trackrag import __version__
from trackrag.cli.index import CLIOptions, register_index_commands
from trackrag.cli.init import init_workspace
from trackrag.core.config import AppConfig, DEFAULTS_RESOURCE_NAME, env_overrides
from trackrag.core.logging import configure_logging, get_logger
from trackrag.core.paths import resolve_workspace

_app_help = (
    "Semantic document indexing and retrieval for project data."
    "\n\n"
    "Use `trackrag init` to create a workspace and `trackrag.toml`."
)


def _emit_workspace_summary(*, config: AppConfig, existing: bool) -> None:
    typer.secho("Workspace initialized", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  workspace: {config.workspace}")
    typer.echo(f"  config: {config.workspace / 'trackrag.toml'}")
    typer.echo(f"  database: {config.database_path}")
    typer.echo(f"  defaults: packaged resource ({DEFAULTS_RESOURCE_NAME})")
    typer.echo(
        f"  embedding: {config.embedding.provider}:{config.embedding.model} "
        f"(dim={config.embedding.dim})"
    )
    typer.echo(f"  log level: {config.log_level}")
    if existing:
        typer.echo("  note: existing trackrag.toml kept; use --force to rewrite")


def create_app() -> "typer.Typer":
    """Return the Typer application behind the ``trackrag`` console script."""

    app = typer.Typer(
        help=_app_help,
        no_args_is_help=True,
        rich_markup_mode="rich",
    )

    @app.callback()
    def main_callback(
        ctx: typer.Context,
        workspace: Path | None = typer.Option(
            None,
            "--workspace",
            "-w",
            help=(
                "Workspace directory (defaults to TRACKRAG_WORKSPACE or "
                "~/.trackrag)."
            ),
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            "-l",
            help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
        ),
    ) -> None:
        """Capture global flags for subcommands."""

        ctx.obj = CLIOptions(workspace=workspace, log_level=log_level)

    @app.command("init", help="Create a workspace, config file and database.")
    def init_command(
        ctx: typer.Context,
        provider: str | None = typer.Option(
            None,
            "--provider",
            help="Embedding provider to record in trackrag.toml.",
        ),
        force: bool = typer.Option(
            False,
            "--force",
            help="Rewrite trackrag.toml even if it exists.",
        ),
    ) -> None:
        """Initialize (or re-check) the workspace."""

        options = ctx.obj if isinstance(ctx.obj, CLIOptions) else CLIOptions()
        env_workspace = os.environ.get("TRACKRAG_WORKSPACE")
        try:
            paths = resolve_workspace(
                workspace_override=options.workspace,
                env_override=Path(env_workspace) if env_workspace else None,
            )
        except ValueError as exc:
            typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        existing = paths.config_file.exists() and not force
        try:
            config = init_workspace(
                workspace=paths.workspace,
                log_level=options.log_level,
                provider=provider,
                env_overrides=env_overrides(),
                force=force,
            )
        except Exception as exc:
            typer.secho(
                f"Failed to initialize workspace: {exc}",
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1) from exc

        configure_logging(level=config.log_level, workspace_path=config.workspace)
        get_logger(__name__, command="init").info(
            "init-complete",
            workspace=str(config.workspace),
            provider=config.embedding.provider,
            version=__version__,
        )
        _emit_workspace_summary(config=config, existing=existing)

    register_index_commands(app)
    return app


__all__ = ["create_app"]
