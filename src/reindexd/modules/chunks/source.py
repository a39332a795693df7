"""Read-only, ordered access to the chunk table."""

from __future__ import annotations

from dataclasses import dataclass
import sqlite3
from typing import Protocol, Sequence, runtime_checkable

from reindexd.modules.db import Database

from .models import Chunk, ChunkKey

__all__ = [
    "ChunkSource",
    "SqliteChunkSource",
]

_CHUNK_COLUMNS = "id, namespace, source_id, chunk_index, text"


@runtime_checkable
class ChunkSource(Protocol):
    """Boundary contract for the chunk store consumed by builds."""

    def count(
        self,
        namespace: str,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> int:
        """Return the number of chunks visible in ``namespace``.

        With ``connection`` the count is taken inside that open transaction.
        """

    def fetch_after(
        self,
        namespace: str,
        cursor: ChunkKey | None,
        *,
        limit: int,
    ) -> tuple[Chunk, ...]:
        """Return up to ``limit`` chunks strictly after ``cursor``, ascending."""

    def fetch_source(self, namespace: str, source_id: str) -> tuple[Chunk, ...]:
        """Return every chunk of ``source_id`` in chunk order."""

    def fetch_by_ids(
        self,
        namespace: str,
        chunk_ids: Sequence[str],
    ) -> dict[str, Chunk]:
        """Return the chunks matching ``chunk_ids`` keyed by id."""


@dataclass(slots=True)
class SqliteChunkSource(ChunkSource):
    """Chunk source backed by the ``chunks`` table of the workspace store."""

    database: Database

    def count(
        self,
        namespace: str,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> int:
        query = "SELECT COUNT(*) FROM chunks WHERE namespace = ?"
        if connection is not None:
            return int(connection.execute(query, (namespace,)).fetchone()[0])
        with self.database.session() as owned:
            return int(owned.execute(query, (namespace,)).fetchone()[0])

    def fetch_after(
        self,
        namespace: str,
        cursor: ChunkKey | None,
        *,
        limit: int,
    ) -> tuple[Chunk, ...]:
        if limit < 1:
            raise ValueError("limit must be >= 1")

        if cursor is None:
            sql = (
                f"SELECT {_CHUNK_COLUMNS} FROM chunks "  # noqa: S608 - constant
                "WHERE namespace = ? "
                "ORDER BY source_id ASC, chunk_index ASC, id ASC "
                "LIMIT ?"
            )
            params: tuple[object, ...] = (namespace, limit)
        else:
            sql = (
                f"SELECT {_CHUNK_COLUMNS} FROM chunks "  # noqa: S608 - constant
                "WHERE namespace = ? "
                "AND (source_id, chunk_index, id) > (?, ?, ?) "
                "ORDER BY source_id ASC, chunk_index ASC, id ASC "
                "LIMIT ?"
            )
            params = (namespace, *cursor.as_params(), limit)

        with self.database.session() as connection:
            rows = connection.execute(sql, params).fetchall()
        return tuple(Chunk.from_row(row) for row in rows)

    def fetch_source(self, namespace: str, source_id: str) -> tuple[Chunk, ...]:
        with self.database.session() as connection:
            rows = connection.execute(
                (
                    f"SELECT {_CHUNK_COLUMNS} FROM chunks "  # noqa: S608
                    "WHERE namespace = ? AND source_id = ? "
                    "ORDER BY chunk_index ASC, id ASC"
                ),
                (namespace, source_id),
            ).fetchall()
        return tuple(Chunk.from_row(row) for row in rows)

    def fetch_by_ids(
        self,
        namespace: str,
        chunk_ids: Sequence[str],
    ) -> dict[str, Chunk]:
        if not chunk_ids:
            return {}
        placeholders = ", ".join("?" for _ in chunk_ids)
        with self.database.session() as connection:
            rows = connection.execute(
                (
                    f"SELECT {_CHUNK_COLUMNS} FROM chunks "  # noqa: S608
                    f"WHERE namespace = ? AND id IN ({placeholders})"
                ),
                (namespace, *chunk_ids),
            ).fetchall()
        chunks = (Chunk.from_row(row) for row in rows)
        return {chunk.id: chunk for chunk in chunks}
