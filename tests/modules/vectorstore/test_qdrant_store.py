"""Tests for :mod:`reindexd.modules.vectorstore.qdrant`."""

from __future__ import annotations

import uuid

import pytest
from qdrant_client import QdrantClient

from reindexd.core.config import VectorStoreSettings
from reindexd.modules.vectorstore import (
    QdrantVectorStore,
    VectorPoint,
    VectorStoreCollectionMismatchError,
    VectorStoreRequestError,
    build_qdrant_client,
    point_id_for,
)


@pytest.fixture
def store(qdrant_client: QdrantClient, stub_logger) -> QdrantVectorStore:
    return QdrantVectorStore(qdrant_client, logger=stub_logger)


def _points(count: int, *, source_id: str = "doc-1") -> list[VectorPoint]:
    return [
        VectorPoint(
            id=point_id_for(f"{source_id}-c{index}"),
            vector=(1.0, float(index + 1), 0.5, 0.25),
            payload={
                "namespace": "ns",
                "source_id": source_id,
                "chunk_index": index,
                "chunk_id": f"{source_id}-c{index}",
            },
        )
        for index in range(count)
    ]


def test_ensure_collection_is_idempotent(store, qdrant_client, stub_logger) -> None:
    assert store.ensure_collection("blue", 4) is True
    assert store.ensure_collection("blue", 4) is False

    assert qdrant_client.collection_exists("blue")
    assert stub_logger.messages("info").count("qdrant-collection-created") == 1


def test_ensure_collection_rejects_different_vector_size(store) -> None:
    store.ensure_collection("blue", 4)

    with pytest.raises(VectorStoreCollectionMismatchError) as excinfo:
        store.ensure_collection("blue", 8)

    assert excinfo.value.expected == 8
    assert excinfo.value.actual == 4


def test_upsert_is_idempotent_by_point_id(store) -> None:
    store.ensure_collection("blue", 4)

    assert store.upsert("blue", _points(3)) == 3
    store.upsert("blue", _points(3))

    assert store.count("blue") == 3


def test_upsert_into_missing_collection_is_a_request_error(store, stub_logger) -> None:
    with pytest.raises(VectorStoreRequestError) as excinfo:
        store.upsert("missing", _points(1))

    assert excinfo.value.collection == "missing"
    assert "qdrant-request-failed" in stub_logger.messages("error")


def test_upsert_without_points_is_a_no_op(store) -> None:
    assert store.upsert("missing", []) == 0


def test_search_filters_by_source(store) -> None:
    store.ensure_collection("blue", 4)
    store.upsert("blue", _points(3, source_id="doc-1") + _points(2, source_id="doc-2"))

    everything = store.search("blue", (1.0, 3.0, 0.5, 0.25), limit=10)
    only_doc_2 = store.search(
        "blue",
        (1.0, 2.0, 0.5, 0.25),
        limit=10,
        source_id="doc-2",
    )

    assert len(everything) == 5
    assert everything[0].payload["chunk_id"] == "doc-1-c2"
    assert {hit.payload["source_id"] for hit in only_doc_2} == {"doc-2"}
    assert len(only_doc_2) == 2


def test_retrieve_returns_payloads(store) -> None:
    store.ensure_collection("blue", 4)
    points = _points(2)
    store.upsert("blue", points)

    fetched = store.retrieve("blue", [points[1].id, point_id_for("absent")])

    assert len(fetched) == 1
    assert fetched[0].payload["chunk_index"] == 1
    assert len(fetched[0].vector) == 4


def test_unknown_distance_is_rejected(qdrant_client) -> None:
    with pytest.raises(ValueError):
        QdrantVectorStore(qdrant_client, distance="hamming")


def test_point_id_for_keeps_distinct_chunk_ids_apart() -> None:
    value = uuid.uuid4()
    ids = ["7", "007", "²", str(value), value.hex, str(value).upper()]

    derived = [point_id_for(chunk_id) for chunk_id in ids]

    assert len(set(derived)) == len(ids)
    assert all(uuid.UUID(item).version == 5 for item in derived)
    assert point_id_for("doc-1-c0") == point_id_for("doc-1-c0")
    with pytest.raises(ValueError):
        point_id_for("  ")


def test_build_qdrant_client_supports_memory_mode() -> None:
    client = build_qdrant_client(VectorStoreSettings(url=":memory:"))
    try:
        assert client.get_collections().collections == []
    finally:
        client.close()
