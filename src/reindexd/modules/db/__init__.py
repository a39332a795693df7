"""SQLite persistence helpers."""

from __future__ import annotations

from .store import SCHEMA_RESOURCE, Database, DatabaseError

__all__ = [
    "Database",
    "DatabaseError",
    "SCHEMA_RESOURCE",
]
