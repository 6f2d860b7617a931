"""Indexing, sync and retrieval commands."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import typer

from trackrag.core.config import (
    AppConfig,
    env_overrides,
    load_config,
    load_packaged_defaults,
    load_user_config,
)
from trackrag.core.logging import Logger, configure_logging, get_logger
from trackrag.core.paths import WorkspacePaths, resolve_workspace
from trackrag.indexing.errors import (
    AlreadyRunningError,
    DocumentNotFoundError,
    ProviderUnavailableError,
    TrackragError,
)
from trackrag.indexing.models import IndexState, IndexStatus, SourceKind
from trackrag.indexing.runtime import IndexingRuntime, build_runtime

__all__ = [
    "CLIOptions",
    "IndexCLIContext",
    "EXIT_FAILURE",
    "EXIT_ALREADY_RUNNING",
    "EXIT_PROVIDER_UNAVAILABLE",
    "register_index_commands",
]

EXIT_FAILURE = 1
EXIT_ALREADY_RUNNING = 2
EXIT_PROVIDER_UNAVAILABLE = 3


@dataclass(slots=True)
class CLIOptions:
    """Global flags captured by the root callback."""

    workspace: Path | None = None
    log_level: str | None = None


@dataclass(slots=True)
class IndexCLIContext:
    """Resolved workspace, configuration and services for one command."""

    paths: WorkspacePaths
    config: AppConfig
    runtime: IndexingRuntime
    logger: Logger


def _resolve_paths(options: CLIOptions) -> WorkspacePaths:
    env_workspace = os.environ.get("TRACKRAG_WORKSPACE")
    env_override = Path(env_workspace).expanduser() if env_workspace else None
    try:
        return resolve_workspace(
            workspace_override=options.workspace,
            env_override=env_override,
        )
    except ValueError as exc:
        typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=EXIT_FAILURE) from exc


def _build_context(ctx: typer.Context, command: str) -> IndexCLIContext:
    options = ctx.obj if isinstance(ctx.obj, CLIOptions) else CLIOptions()
    paths = _resolve_paths(options)

    if not paths.config_file.exists():
        typer.secho(
            (
                "Workspace config not found at "
                f"{paths.config_file}. Run `trackrag init` first."
            ),
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=EXIT_FAILURE)

    cli_overrides = {"log_level": options.log_level} if options.log_level else None
    try:
        config = load_config(
            defaults=load_packaged_defaults(),
            user_config=load_user_config(paths.config_file),
            env_config=env_overrides(),
            cli_overrides=cli_overrides,
        )
    except (ValueError, OSError) as exc:
        typer.secho(f"Failed to load workspace config: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=EXIT_FAILURE) from exc

    configure_logging(level=config.log_level, workspace_path=paths.workspace)
    logger = get_logger(__name__, command=command)

    try:
        runtime = build_runtime(config, logger=logger)
    except (TrackragError, ValueError) as exc:
        _handle_failure(command, exc, logger=logger)

    return IndexCLIContext(
        paths=paths,
        config=config,
        runtime=runtime,
        logger=logger,
    )


def _handle_failure(action: str, error: Exception, *, logger: Logger) -> None:
    if isinstance(error, AlreadyRunningError):
        code = EXIT_ALREADY_RUNNING
        message = f"{action} skipped: a sync is already running."
    elif isinstance(error, ProviderUnavailableError):
        code = EXIT_PROVIDER_UNAVAILABLE
        message = f"{action} failed: embedding provider unavailable ({error})."
    else:
        code = EXIT_FAILURE
        message = f"{action} failed: {error}"
    typer.secho(message, fg=typer.colors.RED)
    logger.error(
        "command-failed",
        action=action,
        error_type=error.__class__.__name__,
        error=str(error),
        exit_code=code,
    )
    raise typer.Exit(code=code) from error


def _render_state(state: IndexState) -> None:
    colors = {
        IndexStatus.INDEXED: typer.colors.GREEN,
        IndexStatus.FAILED: typer.colors.RED,
    }
    typer.secho(
        f"{state.document_id}: {state.status.value}",
        fg=colors.get(state.status, typer.colors.YELLOW),
        bold=True,
    )
    if state.chunk_count is not None:
        typer.echo(f"  chunks: {state.chunk_count}")
    if state.error_message:
        typer.echo(f"  error: {state.error_message}")


def index_command(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document identifier."),
    path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="File whose text is indexed as the document content.",
    ),
    project: str | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Project to register the document under when it is new.",
    ),
    description: str | None = typer.Option(
        None,
        "--description",
        help="Description stored with a newly registered document.",
    ),
) -> None:
    """Chunk, embed and index one document."""

    context = _build_context(ctx, "index")
    store = context.runtime.store
    text = path.read_text(encoding="utf-8")

    try:
        try:
            store.get_index_state(document_id)
        except DocumentNotFoundError:
            if project is None:
                raise typer.BadParameter(
                    "--project is required for a new document",
                    param_hint="--project",
                ) from None
            if not store.has_project(project):
                store.add_project(project, title=project)
            store.add_document(
                document_id,
                project,
                file_name=path.name,
                description=description,
            )
        state = context.runtime.indexer.index_document(document_id, text)
    except TrackragError as exc:
        _handle_failure("index", exc, logger=context.logger)

    if state.status is IndexStatus.PENDING:
        typer.secho(
            "Embedding provider unavailable; document left PENDING.",
            fg=typer.colors.YELLOW,
        )
    _render_state(state)


def reindex_command(
    ctx: typer.Context,
    root: Path = typer.Option(
        ...,
        "--root",
        "-r",
        exists=True,
        file_okay=False,
        help="Directory holding document files, looked up by file name.",
    ),
    project: str | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Only index pending documents of this project.",
    ),
) -> None:
    """Index every PENDING document."""

    context = _build_context(ctx, "reindex")
    store = context.runtime.store

    def _load(state: IndexState) -> str:
        file_name = store.document_file_name(state.document_id)
        return (root / file_name).read_text(encoding="utf-8")

    try:
        outcomes = context.runtime.indexer.index_pending(_load, project_id=project)
    except TrackragError as exc:
        _handle_failure("reindex", exc, logger=context.logger)

    if not outcomes:
        typer.secho("No pending documents.", fg=typer.colors.YELLOW)
    for state in outcomes:
        _render_state(state)


def sync_command(
    ctx: typer.Context,
    kind: SourceKind | None = typer.Option(
        None,
        "--kind",
        "-k",
        case_sensitive=False,
        help="Only sync one kind of row.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the run summary as JSON.",
    ),
) -> None:
    """Backfill coarse embeddings for rows that lack one."""

    context = _build_context(ctx, "sync")
    orchestrator = context.runtime.sync
    try:
        run = orchestrator.sync_all() if kind is None else orchestrator.sync_kind(kind)
    except TrackragError as exc:
        _handle_failure("sync", exc, logger=context.logger)

    summary = run.to_mapping()
    if json_output:
        typer.echo(json.dumps(summary, indent=2, sort_keys=True))
        return

    title = "Sync cancelled" if run.cancelled else "Sync complete"
    typer.secho(title, fg=typer.colors.GREEN, bold=True)
    for name in ("projects", "tasks", "documents"):
        stats = summary[name]
        typer.echo(
            f"  {name}: total={stats['total']} synced={stats['synced']} "
            f"failed={stats['failed']}"
        )


def status_command(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit index health as JSON.",
    ),
) -> None:
    """Show document index health for a project."""

    context = _build_context(ctx, "status")
    try:
        health = context.runtime.retrieval.index_health(project_id)
    except TrackragError as exc:
        _handle_failure("status", exc, logger=context.logger)

    if json_output:
        typer.echo(json.dumps(health.to_mapping(), indent=2, sort_keys=True))
        return

    color = typer.colors.GREEN if health.complete else typer.colors.YELLOW
    typer.secho(f"Project {project_id}", fg=color, bold=True)
    for status in IndexStatus:
        typer.echo(f"  {status.value.lower()}: {health.counts.get(status, 0)}")
    if not health.complete:
        typer.echo("  note: index incomplete; retrieval may miss documents")


def query_command(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to search."),
    text: str = typer.Argument(..., help="Question or search text."),
    k: int | None = typer.Option(
        None,
        "--top-k",
        "-k",
        help="Number of chunks to return (defaults to retrieval.top_k).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit results as JSON.",
    ),
) -> None:
    """Return the chunks of a project closest to the query text."""

    context = _build_context(ctx, "query")
    try:
        results = context.runtime.retrieval.retrieve(project_id, text, k)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--top-k") from exc
    except TrackragError as exc:
        _handle_failure("query", exc, logger=context.logger)

    if json_output:
        payload = [result.to_mapping() for result in results]
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    if not results:
        typer.secho("No indexed chunks for this project.", fg=typer.colors.YELLOW)
    for rank, result in enumerate(results, start=1):
        typer.secho(
            (
                f"{rank}. {result.chunk.document_id}#{result.chunk.ordinal} "
                f"score={result.score:.4f}"
            ),
            fg=typer.colors.CYAN,
            bold=True,
        )
        typer.echo(f"  {result.chunk.text.strip()[:200]}")


def register_index_commands(app: typer.Typer) -> None:
    """Attach the indexing commands to ``app``."""

    app.command("index", help="Chunk, embed and index one document.")(index_command)
    app.command("reindex", help="Index every PENDING document.")(reindex_command)
    app.command("sync", help="Backfill missing coarse embeddings.")(sync_command)
    app.command("status", help="Show document index health.")(status_command)
    app.command("query", help="Retrieve the closest chunks.")(query_command)
