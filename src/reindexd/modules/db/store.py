"""SQLite connection helpers shared by the chunk source and build ledger."""

from __future__ import annotations

from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
import sqlite3
from typing import Iterator

from reindexd.core.logging import Logger, get_logger
from reindexd.resources import get_resource

__all__ = [
    "Database",
    "DatabaseError",
    "SCHEMA_RESOURCE",
]

SCHEMA_RESOURCE = "db/schema.sql"


class DatabaseError(RuntimeError):
    """Raised when the backing SQLite store cannot be prepared."""


@dataclass(slots=True)
class Database:
    """Open connections against the workspace SQLite file."""

    path: Path
    busy_timeout_ms: int = 5000
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="db")

    def connect(self) -> sqlite3.Connection:
        """Return a configured connection; callers own closing it."""

        connection = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        connection.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return connection

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection committed on success, rolled back on error."""

        with closing(self.connect()) as connection:
            with connection:
                yield connection

    @contextmanager
    def immediate(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken up front so concurrent writers serialize
        before reading state they intend to modify.
        """

        with closing(self.connect()) as connection:
            connection.isolation_level = None
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK")
                raise
            connection.execute("COMMIT")

    def ensure_schema(self) -> None:
        """Create the database file and apply the packaged schema."""

        try:
            script = get_resource(SCHEMA_RESOURCE).read_text(encoding="utf-8")
        except FileNotFoundError as exc:  # pragma: no cover - packaging error
            raise DatabaseError(
                f"Packaged schema {SCHEMA_RESOURCE!r} is missing."
            ) from exc

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.session() as connection:
                connection.executescript(script)
        except sqlite3.DatabaseError as exc:
            raise DatabaseError(
                f"Failed to apply schema to {self.path}: {exc}"
            ) from exc

        self.logger.debug("db-schema-ensured", path=str(self.path))
