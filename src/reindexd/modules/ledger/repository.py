"""SQLite persistence for build ledger rows."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
import sqlite3
from typing import Callable, Iterator

from reindexd.modules.chunks import ChunkKey
from reindexd.modules.db import Database, DatabaseError

from .models import BuildLedger, BuildStatus

__all__ = ["LedgerRepository"]

_COLUMNS = (
    "id, namespace, collection, embedding_model_id, embedding_dim, "
    "embedding_provider, status, is_active, chunks_total, chunks_done, "
    "cursor_source_id, cursor_chunk_index, cursor_chunk_id, error_message, "
    "built_at, created_at, updated_at"
)


def _default_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class LedgerRepository:
    """Read and write ``build_ledgers`` rows.

    Every method accepts an optional ``connection`` so callers can group
    several statements in one transaction (see
    :meth:`reindexd.modules.db.Database.immediate`). Without one, each call
    runs in its own committed session.

    Mutations are guarded in SQL by the expected current status and return
    ``None`` when no row matched, leaving the interpretation to the caller.
    """

    database: Database
    now: Callable[[], datetime] = field(default=_default_now)

    @contextmanager
    def _use(
        self,
        connection: sqlite3.Connection | None,
    ) -> Iterator[sqlite3.Connection]:
        if connection is not None:
            yield connection
            return
        with self.database.session() as owned:
            yield owned

    def _timestamp(self) -> str:
        value = self.now()
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    def _fetch(
        self,
        connection: sqlite3.Connection,
        where: str,
        params: tuple[object, ...],
    ) -> BuildLedger | None:
        row = connection.execute(
            f"SELECT {_COLUMNS} FROM build_ledgers WHERE {where}",  # noqa: S608
            params,
        ).fetchone()
        return BuildLedger.from_row(row) if row is not None else None

    # ------------------------------------------------------------------#
    # Queries
    # ------------------------------------------------------------------#
    def get(
        self,
        namespace: str,
        collection: str,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        with self._use(connection) as conn:
            return self._fetch(
                conn,
                "namespace = ? AND collection = ?",
                (namespace, collection),
            )

    def get_by_id(
        self,
        ledger_id: int,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        with self._use(connection) as conn:
            return self._fetch(conn, "id = ?", (ledger_id,))

    def get_active(
        self,
        namespace: str,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        with self._use(connection) as conn:
            return self._fetch(
                conn,
                "namespace = ? AND is_active = 1",
                (namespace,),
            )

    def list(
        self,
        namespace: str | None = None,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> tuple[BuildLedger, ...]:
        sql = f"SELECT {_COLUMNS} FROM build_ledgers"  # noqa: S608
        params: tuple[object, ...] = ()
        if namespace is not None:
            sql += " WHERE namespace = ?"
            params = (namespace,)
        sql += " ORDER BY namespace ASC, created_at ASC, id ASC"
        with self._use(connection) as conn:
            rows = conn.execute(sql, params).fetchall()
        return tuple(BuildLedger.from_row(row) for row in rows)

    # ------------------------------------------------------------------#
    # Mutations
    # ------------------------------------------------------------------#
    def reset_or_create(
        self,
        *,
        namespace: str,
        collection: str,
        embedding_model_id: str,
        embedding_dim: int,
        embedding_provider: str,
        chunks_total: int,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger:
        """Insert a fresh ``building`` row or reset an inactive existing one.

        An active row is left untouched; the returned ledger then still has
        ``is_active`` set.
        """

        stamp = self._timestamp()
        with self._use(connection) as conn:
            conn.execute(
                """
                INSERT INTO build_ledgers (
                    namespace, collection, embedding_model_id, embedding_dim,
                    embedding_provider, status, is_active, chunks_total,
                    chunks_done, cursor_source_id, cursor_chunk_index,
                    cursor_chunk_id, error_message, built_at, created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'building', 0, ?, 0, NULL, NULL, NULL,
                        NULL, NULL, ?, ?)
                ON CONFLICT (namespace, collection) DO UPDATE SET
                    embedding_model_id = excluded.embedding_model_id,
                    embedding_dim = excluded.embedding_dim,
                    embedding_provider = excluded.embedding_provider,
                    status = 'building',
                    chunks_total = excluded.chunks_total,
                    chunks_done = 0,
                    cursor_source_id = NULL,
                    cursor_chunk_index = NULL,
                    cursor_chunk_id = NULL,
                    error_message = NULL,
                    built_at = NULL,
                    updated_at = excluded.updated_at
                WHERE build_ledgers.is_active = 0
                """,
                (
                    namespace,
                    collection,
                    embedding_model_id,
                    embedding_dim,
                    embedding_provider,
                    chunks_total,
                    stamp,
                    stamp,
                ),
            )
            ledger = self._fetch(
                conn,
                "namespace = ? AND collection = ?",
                (namespace, collection),
            )
        if ledger is None:
            raise DatabaseError(
                f"Build ledger {namespace}/{collection} missing after upsert."
            )
        return ledger

    def commit_progress(
        self,
        ledger_id: int,
        *,
        cursor: ChunkKey,
        processed: int,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        """Advance the cursor and ``chunks_done`` in one statement.

        Only a ``building`` row whose cursor is strictly before ``cursor``
        is updated. ``chunks_done`` saturates at ``chunks_total``.
        """

        if processed < 0:
            raise ValueError("processed must be >= 0")
        with self._use(connection) as conn:
            updated = conn.execute(
                """
                UPDATE build_ledgers SET
                    cursor_source_id = ?,
                    cursor_chunk_index = ?,
                    cursor_chunk_id = ?,
                    chunks_done = MIN(chunks_done + ?, chunks_total),
                    updated_at = ?
                WHERE id = ?
                  AND status = 'building'
                  AND (
                    cursor_source_id IS NULL
                    OR (cursor_source_id, cursor_chunk_index, cursor_chunk_id)
                        < (?, ?, ?)
                  )
                """,
                (
                    *cursor.as_params(),
                    processed,
                    self._timestamp(),
                    ledger_id,
                    *cursor.as_params(),
                ),
            ).rowcount
            if not updated:
                return None
            return self._fetch(conn, "id = ?", (ledger_id,))

    def mark_ready(
        self,
        ledger_id: int,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        stamp = self._timestamp()
        return self._transition(
            ledger_id,
            expected=BuildStatus.BUILDING,
            assignments="status = 'ready', built_at = ?, error_message = NULL",
            params=(stamp,),
            connection=connection,
        )

    def mark_failed(
        self,
        ledger_id: int,
        *,
        error_message: str,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        return self._transition(
            ledger_id,
            expected=BuildStatus.BUILDING,
            assignments="status = 'failed', error_message = ?",
            params=(error_message,),
            connection=connection,
        )

    def mark_building(
        self,
        ledger_id: int,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        """Move a ``failed`` row back to ``building`` keeping its cursor."""

        return self._transition(
            ledger_id,
            expected=BuildStatus.FAILED,
            assignments="status = 'building', error_message = NULL",
            params=(),
            connection=connection,
        )

    def clear_active(
        self,
        namespace: str,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> int:
        with self._use(connection) as conn:
            return conn.execute(
                """
                UPDATE build_ledgers SET is_active = 0, updated_at = ?
                WHERE namespace = ? AND is_active = 1
                """,
                (self._timestamp(), namespace),
            ).rowcount

    def set_active(
        self,
        ledger_id: int,
        *,
        connection: sqlite3.Connection | None = None,
    ) -> BuildLedger | None:
        with self._use(connection) as conn:
            updated = conn.execute(
                """
                UPDATE build_ledgers SET is_active = 1, updated_at = ?
                WHERE id = ? AND status = 'ready'
                """,
                (self._timestamp(), ledger_id),
            ).rowcount
            if not updated:
                return None
            return self._fetch(conn, "id = ?", (ledger_id,))

    def _transition(
        self,
        ledger_id: int,
        *,
        expected: BuildStatus,
        assignments: str,
        params: tuple[object, ...],
        connection: sqlite3.Connection | None,
    ) -> BuildLedger | None:
        with self._use(connection) as conn:
            updated = conn.execute(
                f"UPDATE build_ledgers SET {assignments}, updated_at = ? "  # noqa: S608
                "WHERE id = ? AND status = ?",
                (*params, self._timestamp(), ledger_id, expected.value),
            ).rowcount
            if not updated:
                return None
            return self._fetch(conn, "id = ?", (ledger_id,))
