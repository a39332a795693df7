"""Filesystem layout of a reindexd workspace."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_WORKSPACE_NAME",
    "WorkspacePaths",
    "resolve_workspace",
]

DEFAULT_WORKSPACE_NAME = ".reindexd"
CONFIG_FILENAME = "reindexd.toml"


@dataclass(frozen=True, slots=True)
class WorkspacePaths:
    """Where a workspace keeps its config, logs and SQLite data.

    Example:
        >>> from pathlib import Path
        >>> paths = WorkspacePaths.for_root(Path("/srv/reindexd"))
        >>> paths.config_file.name, paths.data_dir.name
        ('reindexd.toml', 'data')
    """

    workspace: Path
    config_file: Path
    logs_dir: Path
    data_dir: Path

    @classmethod
    def for_root(cls, root: Path) -> "WorkspacePaths":
        return cls(
            workspace=root,
            config_file=root / CONFIG_FILENAME,
            logs_dir=root / "logs",
            data_dir=root / "data",
        )

    def iter_all(self) -> Iterable[Path]:
        yield from (self.workspace, self.config_file, self.logs_dir, self.data_dir)

    def database_path(self, filename: str) -> Path:
        """Return where the SQLite file lives.

        Relative names land in ``data_dir``; absolute ones (a shared volume
        holding the chunk table, say) are used unchanged.
        """

        candidate = Path(filename).expanduser()
        return candidate if candidate.is_absolute() else self.data_dir / candidate


def _absolute(candidate: Path) -> Path:
    expanded = Path(candidate).expanduser()
    if not expanded.is_absolute():
        expanded = Path.cwd() / expanded
    return expanded.resolve(strict=False)


def resolve_workspace(
    *,
    workspace_override: Path | None = None,
    env_override: Path | None = None,
) -> WorkspacePaths:
    """Pick the workspace root: CLI flag, then ``REINDEXD_WORKSPACE``, then home.

    Raises:
        ValueError: If the chosen root exists and is a regular file.
    """

    chosen = (
        workspace_override
        or env_override
        or Path.home() / DEFAULT_WORKSPACE_NAME
    )
    root = _absolute(chosen)
    if root.is_file():
        raise ValueError(f"Workspace must be a directory, not a file: {root}")
    return WorkspacePaths.for_root(root)
