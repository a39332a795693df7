"""Core utilities shared across :mod:`reindexd` modules.

The core namespace provides cohesive seams for configuration loading, logging
setup, and workspace path resolution so feature modules remain lightweight.
"""

from __future__ import annotations

from .config import AppConfig, load_config, load_workspace_config
from .logging import configure_logging, get_logger
from .paths import WorkspacePaths, resolve_workspace

__all__ = [
    "AppConfig",
    "configure_logging",
    "get_logger",
    "load_config",
    "load_workspace_config",
    "WorkspacePaths",
    "resolve_workspace",
]
