"""Workspace bootstrap behind ``reindexd init``."""

from __future__ import annotations

from pathlib import Path

from reindexd.core.config import (
    AppConfig,
    DEFAULTS_RESOURCE_NAME,
    load_config,
    load_packaged_defaults,
    read_packaged_defaults_text,
    render_user_config,
)
from reindexd.core.paths import resolve_workspace
from reindexd.modules.db import Database


def _write_unless_present(target: Path, text: str, *, force: bool) -> None:
    if target.exists() and not force:
        return
    target.write_text(text, encoding="utf-8")


def init_workspace(
    *,
    workspace: Path,
    force: bool = False,
    log_level: str | None = None,
) -> AppConfig:
    """Create ``workspace`` with its config files and an initialized database.

    Existing ``reindexd.toml`` and defaults copies are kept unless ``force``
    is set. The schema is applied every time; it only creates missing objects.

    Example:
        >>> from pathlib import Path
        >>> config = init_workspace(workspace=Path("/tmp/reindexd-example"))
        >>> config.embeddings.max_chars
        1800
    """

    paths = resolve_workspace(workspace_override=workspace)
    for directory in (paths.workspace, paths.logs_dir, paths.data_dir):
        directory.mkdir(parents=True, exist_ok=True)

    overrides: dict[str, object] = {"workspace": str(paths.workspace)}
    if log_level:
        overrides["log_level"] = log_level
    config = load_config(defaults=load_packaged_defaults(), cli_overrides=overrides)

    _write_unless_present(
        paths.workspace / DEFAULTS_RESOURCE_NAME,
        read_packaged_defaults_text(),
        force=force,
    )
    _write_unless_present(paths.config_file, render_user_config(config), force=force)

    database = Database(
        path=paths.database_path(config.db.filename),
        busy_timeout_ms=config.db.busy_timeout_ms,
    )
    database.ensure_schema()
    return config


__all__ = ["init_workspace"]
