"""Structured logging setup shared by the CLI and the indexing services.

Every event goes through structlog and lands on the stdlib root logger, which
fans out to a Rich console handler and, for commands run against a workspace,
a JSON-lines file under ``<workspace>/logs``. The file rotates at midnight UTC
and rotated files are gzipped.
"""

from __future__ import annotations

import gzip
import logging
import shutil
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Sequence

import structlog
from rich.console import Console
from rich.logging import RichHandler

Logger = structlog.stdlib.BoundLogger

LOG_FILENAME = "trackrag.log"
LOG_DIRNAME = "logs"
_KEEP_ROTATED = 7

# Applied to structlog events and to plain stdlib records (httpx, openai).
_SHARED_PROCESSORS: tuple[Any, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)


def _level_number(level: str) -> int:
    name = level.strip().upper()
    number = logging.getLevelName(name)
    # getLevelName echoes unknown names back as "Level X".
    if not isinstance(number, int):
        raise ValueError(f"Unsupported log level: {level!r}")
    return number


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=list(_SHARED_PROCESSORS),
    )


def _compress_rotated(source: str, dest: str) -> None:
    with open(source, "rb") as plain, gzip.open(dest, "wb") as packed:
        shutil.copyfileobj(plain, packed)
    Path(source).unlink(missing_ok=True)


def _file_handler(log_dir: Path, level: int) -> TimedRotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILENAME,
        when="midnight",
        utc=True,
        backupCount=_KEEP_ROTATED,
        encoding="utf-8",
        delay=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.namer = lambda default_name: default_name + ".gz"
    handler.rotator = _compress_rotated
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(structlog.processors.JSONRenderer(sort_keys=True))
    )
    return handler


def _console_handler(level: int, console: Console | None) -> RichHandler:
    handler = RichHandler(
        console=console if console is not None else Console(stderr=True),
        show_path=False,
        enable_link_path=False,
        markup=False,
        rich_tracebacks=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=False)))
    return handler


def _replace_root_handlers(
    root: logging.Logger,
    handlers: Sequence[logging.Handler],
) -> None:
    for stale in list(root.handlers):
        root.removeHandler(stale)
        stale.close()
    for handler in handlers:
        root.addHandler(handler)


def configure_logging(
    *,
    level: str = "INFO",
    workspace_path: str | Path | None = None,
    console: Console | None = None,
) -> None:
    """Route structlog and stdlib logging through Rich and a JSON log file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Root log level name (case-insensitive).
        workspace_path: Workspace root; when given, ``logs/trackrag.log`` is
            written beneath it.
        console: Rich console override, mostly for tests.

    Raises:
        ValueError: If ``level`` is not a known level name.
    """

    number = _level_number(level)

    structlog.reset_defaults()
    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [_console_handler(number, console)]
    if workspace_path is not None:
        workspace = Path(workspace_path).expanduser().resolve(strict=False)
        handlers.append(_file_handler(workspace / LOG_DIRNAME, number))

    root = logging.getLogger()
    root.setLevel(number)
    _replace_root_handlers(root, handlers)
    logging.captureWarnings(True)


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structlog logger bound to ``initial_context``.

    Example:
        >>> log = get_logger("trackrag.sync", component="backfill-sync")
        >>> log.bind(kind="task") is not log
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


__all__ = ["LOG_FILENAME", "Logger", "configure_logging", "get_logger"]
