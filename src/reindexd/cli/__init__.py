"""Typer application behind the ``reindexd`` console script.

Example:
    >>> import typer
    >>> from reindexd.cli import create_app
    >>> isinstance(create_app(), typer.Typer)
    True
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from reindexd.cli.build import create_build_app
from reindexd.cli.init import init_workspace
from reindexd.core.config import DEFAULTS_RESOURCE_NAME, AppConfig
from reindexd.core.logging import bind_log_context, configure_logging, get_logger
from reindexd.core.paths import resolve_workspace
from reindexd.modules.db import DatabaseError

_APP_HELP = """\
Resumable re-embedding and re-indexing with blue/green activation.

Run `reindexd init` once per workspace, then use `reindexd build` to start,
tick and activate index builds.
"""


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value).expanduser() if value else None


def _summary(config: AppConfig, *, existing: bool, force: bool) -> list[str]:
    embeddings = config.embeddings
    lines = [
        f"  workspace: {config.workspace}",
        f"  config: {config.workspace / 'reindexd.toml'}",
        f"  defaults: {DEFAULTS_RESOURCE_NAME}",
        f"  log level: {config.log_level}",
        f"  embeddings: {embeddings.provider}:{embeddings.model}",
        f"  vector store: {config.vector_store.url}",
    ]
    if force:
        lines.append("  note: configuration files rewritten")
    elif existing:
        lines.append("  note: existing workspace detected; files left untouched")
    return lines


def init_command(
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace directory (defaults to REINDEXD_WORKSPACE or ~/.reindexd).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Rewrite reindexd.toml and the defaults copy if they exist.",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level to record in the new config (DEBUG/INFO/...).",
    ),
) -> None:
    """Bootstrap a workspace, seed its configuration and create the database."""

    try:
        paths = resolve_workspace(
            workspace_override=workspace,
            env_override=_env_path("REINDEXD_WORKSPACE"),
        )
    except ValueError as exc:
        typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    existing = paths.config_file.exists()
    try:
        config = init_workspace(
            workspace=paths.workspace,
            force=force,
            log_level=log_level or os.environ.get("REINDEXD_LOG_LEVEL"),
        )
    except (DatabaseError, OSError, ValueError) as exc:
        typer.secho(f"Failed to initialize workspace: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    configure_logging(level=config.log_level, workspace_path=config.workspace)
    bind_log_context(command="init", workspace=str(config.workspace))
    get_logger(__name__).info("init-complete", force=force, existing=existing)

    typer.secho("Workspace initialized", fg=typer.colors.GREEN, bold=True)
    for line in _summary(config, existing=existing, force=force):
        typer.echo(line)


def create_app() -> typer.Typer:
    """Assemble the ``reindexd`` command tree."""

    app = typer.Typer(help=_APP_HELP, no_args_is_help=True, rich_markup_mode="rich")

    @app.callback()
    def main_callback() -> None:
        """Dispatch to a subcommand."""

    app.command("init")(init_command)
    app.add_typer(create_build_app(), name="build")
    return app


__all__ = ["create_app", "init_command"]
