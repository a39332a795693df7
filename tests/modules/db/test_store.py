"""Tests for :mod:`reindexd.modules.db.store`."""

from __future__ import annotations

from pathlib import Path
import sqlite3

import pytest

from reindexd.modules.db import Database

_INSERT_LEDGER = """
INSERT INTO build_ledgers (
    namespace, collection, embedding_model_id, embedding_dim,
    embedding_provider, status, is_active, created_at, updated_at
) VALUES (?, ?, 'm', 8, 'stub', ?, ?, '2026-01-01T00:00:00Z',
          '2026-01-01T00:00:00Z')
"""


def test_ensure_schema_creates_file_and_tables(tmp_path: Path) -> None:
    db = Database(path=tmp_path / "nested" / "reindexd.sqlite3")

    db.ensure_schema()
    db.ensure_schema()

    assert db.path.exists()
    with db.session() as connection:
        names = {
            row["name"]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type IN ('table', 'index')"
            )
        }
    assert {"chunks", "build_ledgers", "idx_build_ledgers_single_active"} <= names


def test_single_active_row_per_namespace_is_enforced(database: Database) -> None:
    with database.session() as connection:
        connection.execute(_INSERT_LEDGER, ("ns", "blue", "ready", 1))
        connection.execute(_INSERT_LEDGER, ("ns", "green", "ready", 0))
        connection.execute(_INSERT_LEDGER, ("other", "blue", "ready", 1))

    with pytest.raises(sqlite3.IntegrityError):
        with database.session() as connection:
            connection.execute(
                "UPDATE build_ledgers SET is_active = 1 "
                "WHERE namespace = 'ns' AND collection = 'green'"
            )


def test_active_row_must_be_ready(database: Database) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        with database.session() as connection:
            connection.execute(_INSERT_LEDGER, ("ns", "blue", "building", 1))


def test_partial_cursor_is_rejected(database: Database) -> None:
    with database.session() as connection:
        connection.execute(_INSERT_LEDGER, ("ns", "blue", "building", 0))

    with pytest.raises(sqlite3.IntegrityError):
        with database.session() as connection:
            connection.execute(
                "UPDATE build_ledgers SET cursor_source_id = 'doc-1' "
                "WHERE collection = 'blue'"
            )


def test_immediate_rolls_back_on_error(database: Database) -> None:
    with pytest.raises(RuntimeError):
        with database.immediate() as connection:
            connection.execute(_INSERT_LEDGER, ("ns", "blue", "building", 0))
            raise RuntimeError("boom")

    with database.session() as connection:
        count = connection.execute("SELECT COUNT(*) FROM build_ledgers").fetchone()
    assert count[0] == 0


def test_immediate_commits_on_success(database: Database) -> None:
    with database.immediate() as connection:
        connection.execute(_INSERT_LEDGER, ("ns", "blue", "building", 0))

    with database.session() as connection:
        count = connection.execute("SELECT COUNT(*) FROM build_ledgers").fetchone()
    assert count[0] == 1
