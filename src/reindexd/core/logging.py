"""Structured logging setup shared by the CLI and the build services.

Every process (a single ``reindexd build tick`` run from cron, or a long
``reindexd build run``) calls :func:`configure_logging` once. Events go to a
Rich console handler on stderr and, when a workspace is known, to a JSON lines
file under ``<workspace>/logs`` rotated daily and gzip-compressed.
"""

from __future__ import annotations

import gzip
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import shutil
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
import structlog

Logger = structlog.stdlib.BoundLogger

LOG_FILENAME = "reindexd.log"
_KEEP_ARCHIVES = 7

# HTTP client loggers stay at WARNING unless DEBUG is requested.
_TRANSPORT_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")

_PRE_CHAIN: tuple[Any, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    try:
        return logging.getLevelNamesMapping()[level.strip().upper()]
    except KeyError:
        raise ValueError(f"Unsupported log level: {level!r}") from None


def _compress_rotated(source: str, dest: str) -> None:
    with open(source, "rb") as plain, gzip.open(dest, "wb") as packed:
        shutil.copyfileobj(plain, packed)
    Path(source).unlink(missing_ok=True)


def _attach_renderer(
    handler: logging.Handler,
    renderer: Any,
    level: int,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=list(_PRE_CHAIN),
        )
    )
    return handler


def _file_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILENAME,
        when="midnight",
        backupCount=_KEEP_ARCHIVES,
        utc=True,
        encoding="utf-8",
        delay=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.namer = lambda name: f"{name}.gz"
    handler.rotator = _compress_rotated
    return _attach_renderer(
        handler,
        structlog.processors.JSONRenderer(sort_keys=True),
        level,
    )


def _console_handler(level: int, console: Console | None) -> logging.Handler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        enable_link_path=False,
        log_time_format="%H:%M:%S",
    )
    return _attach_renderer(
        handler,
        structlog.dev.ConsoleRenderer(colors=False),
        level,
    )


def configure_logging(
    *,
    level: str | int = "INFO",
    workspace_path: str | Path | None = None,
    console: Console | None = None,
) -> None:
    """Route structlog events through stdlib logging handlers.

    Calling it again replaces the previous handlers, so tests and repeated
    CLI invocations in one process do not stack duplicate output.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """

    numeric = _level_number(level)

    structlog.reset_defaults()
    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = [_console_handler(numeric, console)]
    if workspace_path is not None:
        root_dir = Path(workspace_path).expanduser().resolve(strict=False)
        handlers.append(_file_handler(root_dir / "logs", numeric))

    root = logging.getLogger()
    for stale in list(root.handlers):
        root.removeHandler(stale)
        stale.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(numeric)

    transport = numeric if numeric <= logging.DEBUG else logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport)

    logging.captureWarnings(True)


def bind_log_context(**fields: Any) -> None:
    """Replace the context merged into every event of the current run.

    Example:
        >>> bind_log_context(command="tick", workspace="/tmp/ws")
        >>> sorted(structlog.contextvars.get_contextvars())
        ['command', 'workspace']
        >>> bind_log_context()
    """

    structlog.contextvars.clear_contextvars()
    if fields:
        structlog.contextvars.bind_contextvars(**fields)


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structlog logger, optionally pre-bound with ``initial_context``."""

    return structlog.get_logger(name).bind(**initial_context)


__all__ = [
    "LOG_FILENAME",
    "Logger",
    "bind_log_context",
    "configure_logging",
    "get_logger",
]
