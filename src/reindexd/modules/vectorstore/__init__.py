"""Vector store adapter used by index builds and the read path."""

from __future__ import annotations

from .errors import (
    VectorStoreCollectionMismatchError,
    VectorStoreError,
    VectorStoreRequestError,
)
from .qdrant import (
    MEMORY_LOCATION,
    PointId,
    QdrantVectorStore,
    SearchHit,
    VectorPoint,
    build_qdrant_client,
    point_id_for,
)

__all__ = [
    "MEMORY_LOCATION",
    "PointId",
    "QdrantVectorStore",
    "SearchHit",
    "VectorPoint",
    "VectorStoreCollectionMismatchError",
    "VectorStoreError",
    "VectorStoreRequestError",
    "build_qdrant_client",
    "point_id_for",
]
