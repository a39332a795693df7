"""Shared pytest fixtures for reindexd tests."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Sequence

import pytest
from qdrant_client import QdrantClient
from structlog import get_logger

from reindexd.core.config import EmbeddingSettings
from reindexd.modules.build import (
    ActivationSwitch,
    ActiveIndexResolver,
    BuildService,
    EmbedderPool,
)
from reindexd.modules.chunks import SqliteChunkSource
from reindexd.modules.db import Database
from reindexd.modules.embeddings import (
    EmbeddingProviderModel,
    EmbeddingSizeRejectedError,
    ProviderRegistry,
)
from reindexd.modules.ledger import LedgerRepository
from reindexd.modules.vectorstore import QdrantVectorStore

STUB_DIM = 8
STUB_MODEL = "stub-model"

ChunkRow = tuple[str, int, str, str]


class StubLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def warning(self, message: str, **kwargs: Any) -> None:
        self.events.append(("warning", {"message": message, **kwargs}))

    def info(self, message: str, **kwargs: Any) -> None:
        self.events.append(("info", {"message": message, **kwargs}))

    def debug(self, message: str, **kwargs: Any) -> None:
        self.events.append(("debug", {"message": message, **kwargs}))

    def error(self, message: str, **kwargs: Any) -> None:
        self.events.append(("error", {"message": message, **kwargs}))

    def bind(self, **kwargs: Any) -> "StubLogger":
        return self

    def messages(self, level: str | None = None) -> list[str]:
        return [
            payload["message"]
            for event_level, payload in self.events
            if level is None or event_level == level
        ]


def vector_for(text: str, dim: int = STUB_DIM) -> tuple[float, ...]:
    """Deterministic, non-zero vector derived from ``text``."""

    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return tuple(0.1 + digest[index % len(digest)] / 255 for index in range(dim))


class StubProvider:
    """Embedding provider returning hash-derived vectors.

    ``reject_over`` makes it refuse any request containing a text longer than
    that many characters, the way TEI refuses inputs over its token limit.
    """

    def __init__(
        self,
        *,
        dim: int = STUB_DIM,
        reject_over: int | None = None,
        return_dim: int | None = None,
    ) -> None:
        self.dim = dim
        self.reject_over = reject_over
        self.return_dim = return_dim
        self.failure: Exception | None = None
        self.calls: list[tuple[str, ...]] = []

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        return EmbeddingProviderModel(provider="stub", name=model, dim=self.dim)

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
    ) -> tuple[tuple[float, ...], ...]:
        self.calls.append(tuple(texts))
        if self.failure is not None:
            raise self.failure
        if self.reject_over is not None and any(
            len(text) > self.reject_over for text in texts
        ):
            raise EmbeddingSizeRejectedError(
                (
                    "TEI embed failed: 413 Payload Too Large "
                    "Input validation error: `inputs` must have less than "
                    "512 tokens"
                ),
                provider="stub",
                model=model,
                status_code=413,
            )
        dim = self.return_dim or self.dim
        return tuple(vector_for(text, dim) for text in texts)


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(path=tmp_path / "data" / "reindexd.sqlite3")
    db.ensure_schema()
    return db


@pytest.fixture
def seed_chunks(database: Database) -> Callable[[str, Iterable[ChunkRow]], None]:
    """Insert ``(source_id, chunk_index, chunk_id, text)`` rows."""

    def _seed(namespace: str, rows: Iterable[ChunkRow]) -> None:
        with database.session() as connection:
            connection.executemany(
                (
                    "INSERT INTO chunks (id, namespace, source_id, chunk_index, "
                    "text) VALUES (?, ?, ?, ?, ?)"
                ),
                [
                    (chunk_id, namespace, source_id, chunk_index, text)
                    for source_id, chunk_index, chunk_id, text in rows
                ],
            )

    return _seed


def make_rows(count: int, *, per_source: int = 10, prefix: str = "doc") -> list[ChunkRow]:
    """Return ``count`` chunk rows spread over sources of ``per_source``."""

    rows = []
    for position in range(count):
        source = f"{prefix}-{position // per_source:03d}"
        index = position % per_source
        chunk_id = f"{source}-c{index:02d}"
        rows.append((source, index, chunk_id, f"text of {chunk_id}"))
    return rows


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings(provider="stub", model=STUB_MODEL, dim=STUB_DIM)


@pytest.fixture
def qdrant_client() -> Iterator[QdrantClient]:
    client = QdrantClient(":memory:")
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def build_env(
    database: Database,
    stub_provider: StubProvider,
    embedding_settings: EmbeddingSettings,
    qdrant_client: QdrantClient,
) -> SimpleNamespace:
    """Wire real services over SQLite, in-memory Qdrant and the stub provider."""

    logger = StubLogger()
    registry = ProviderRegistry({"stub": lambda context: stub_provider})
    ledgers = LedgerRepository(database)
    chunks = SqliteChunkSource(database)
    store = QdrantVectorStore(qdrant_client, logger=get_logger("test.qdrant"))
    embedders = EmbedderPool(
        providers=registry,
        settings=embedding_settings,
        logger=get_logger("test.embedders"),
    )
    service = BuildService(
        database=database,
        ledgers=ledgers,
        chunks=chunks,
        store=store,
        embedders=embedders,
        settings=embedding_settings,
        logger=logger,
    )
    activation = ActivationSwitch(database=database, ledgers=ledgers)
    resolver = ActiveIndexResolver(
        ledgers=ledgers,
        chunks=chunks,
        store=store,
        embedders=embedders,
    )
    return SimpleNamespace(
        database=database,
        ledgers=ledgers,
        chunks=chunks,
        store=store,
        provider=stub_provider,
        service=service,
        activation=activation,
        resolver=resolver,
        logger=logger,
    )


@pytest.fixture
def stub_logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def chunk_rows() -> Callable[..., list[ChunkRow]]:
    """Expose :func:`make_rows` to tests."""

    return make_rows


@pytest.fixture
def provider_factory() -> Callable[..., StubProvider]:
    """Build extra :class:`StubProvider` instances with custom behavior."""

    return StubProvider
