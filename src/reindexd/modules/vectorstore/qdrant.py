"""Qdrant-backed vector store adapter."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from qdrant_client import QdrantClient, models

from reindexd.core.config import VectorStoreSettings
from reindexd.core.logging import Logger, get_logger

from .errors import (
    VectorStoreCollectionMismatchError,
    VectorStoreError,
    VectorStoreRequestError,
)

__all__ = [
    "MEMORY_LOCATION",
    "PointId",
    "QdrantVectorStore",
    "SearchHit",
    "VectorPoint",
    "build_qdrant_client",
    "point_id_for",
]

PointId = int | str

MEMORY_LOCATION = ":memory:"

_DISTANCES: Mapping[str, models.Distance] = {
    "cosine": models.Distance.COSINE,
    "dot": models.Distance.DOT,
    "euclid": models.Distance.EUCLID,
    "manhattan": models.Distance.MANHATTAN,
}


def point_id_for(chunk_id: str) -> PointId:
    """Derive the Qdrant point id for ``chunk_id``.

    Every chunk id, numeric or UUID-shaped ones included, is hashed into a
    UUIDv5 of its exact text, so distinct chunk ids never share a point and
    the same chunk always lands on the same one.

    Example:
        >>> point_id_for("7") == point_id_for("007")
        False
        >>> point_id_for("doc-7#3") == point_id_for("doc-7#3")
        True
    """

    if not chunk_id.strip():
        raise ValueError("chunk_id cannot be blank")
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"chunk:{chunk_id}"))


@dataclass(frozen=True, slots=True)
class VectorPoint:
    """A vector with its id and payload, as written to or read from a store."""

    id: PointId
    vector: tuple[float, ...]
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A scored match returned by :meth:`QdrantVectorStore.search`."""

    id: PointId
    score: float
    payload: Mapping[str, Any] = field(default_factory=dict)


def _status_code(exc: Exception) -> int | None:
    value = getattr(exc, "status_code", None)
    return value if isinstance(value, int) else None


class QdrantVectorStore:
    """Drive a Qdrant instance for collection provisioning and upserts."""

    def __init__(
        self,
        client: QdrantClient,
        *,
        distance: str = "cosine",
        logger: Logger | None = None,
    ) -> None:
        try:
            self._distance = _DISTANCES[distance.strip().lower()]
        except KeyError as exc:
            raise ValueError(f"Unsupported distance metric: {distance!r}") from exc
        self._client = client
        self._logger = (logger or get_logger(__name__)).bind(component="qdrant")

    @property
    def client(self) -> QdrantClient:
        return self._client

    def ensure_collection(self, name: str, vector_size: int) -> bool:
        """Create ``name`` with ``vector_size`` dimensions unless it exists.

        Returns ``True`` when the collection was created. An existing
        collection with a different vector size is an error.

        Raises:
            VectorStoreRequestError: If the existence check or creation fails.
            VectorStoreCollectionMismatchError: On a vector size mismatch.
        """

        if vector_size < 1:
            raise ValueError("vector_size must be >= 1")

        try:
            exists = self._client.collection_exists(collection_name=name)
        except Exception as exc:
            raise self._translate(exc, collection=name, action="check") from exc

        if exists:
            self._check_vector_size(name, vector_size)
            self._logger.debug("qdrant-collection-exists", collection=name)
            return False

        try:
            self._client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=vector_size,
                    distance=self._distance,
                ),
            )
        except Exception as exc:
            raise self._translate(exc, collection=name, action="create") from exc

        self._logger.info(
            "qdrant-collection-created",
            collection=name,
            vector_size=vector_size,
            distance=self._distance.value,
        )
        return True

    def upsert(self, collection: str, points: Sequence[VectorPoint]) -> int:
        """Write ``points`` and wait until Qdrant reports them applied.

        Upserts are keyed by point id, so replaying a batch overwrites the same
        points instead of duplicating them.
        """

        if not points:
            return 0

        structs = [
            models.PointStruct(
                id=point.id,
                vector=list(point.vector),
                payload=dict(point.payload),
            )
            for point in points
        ]
        try:
            result = self._client.upsert(
                collection_name=collection,
                points=structs,
                wait=True,
            )
        except Exception as exc:
            raise self._translate(exc, collection=collection, action="upsert") from exc

        if result.status != models.UpdateStatus.COMPLETED:
            raise VectorStoreRequestError(
                (
                    f"Qdrant upsert into {collection!r} was not completed "
                    f"(status={result.status})."
                ),
                collection=collection,
            )

        self._logger.debug(
            "qdrant-upsert",
            collection=collection,
            points=len(structs),
        )
        return len(structs)

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        *,
        limit: int = 10,
        source_id: str | None = None,
    ) -> tuple[SearchHit, ...]:
        """Return the closest points to ``vector``, optionally for one source."""

        if limit < 1:
            raise ValueError("limit must be >= 1")

        query_filter = None
        if source_id is not None:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(
                        key="source_id",
                        match=models.MatchValue(value=source_id),
                    )
                ]
            )

        try:
            response = self._client.query_points(
                collection_name=collection,
                query=list(vector),
                limit=limit,
                query_filter=query_filter,
                with_payload=True,
            )
        except Exception as exc:
            raise self._translate(exc, collection=collection, action="search") from exc

        return tuple(
            SearchHit(
                id=point.id,
                score=float(point.score),
                payload=dict(point.payload or {}),
            )
            for point in response.points
        )

    def retrieve(
        self,
        collection: str,
        ids: Sequence[PointId],
    ) -> tuple[VectorPoint, ...]:
        """Fetch stored points by id; missing ids are skipped."""

        if not ids:
            return ()
        try:
            records = self._client.retrieve(
                collection_name=collection,
                ids=list(ids),
                with_payload=True,
                with_vectors=True,
            )
        except Exception as exc:
            raise self._translate(
                exc, collection=collection, action="retrieve"
            ) from exc

        points = []
        for record in records:
            vector = record.vector
            if isinstance(vector, dict):  # named vectors are not used here
                vector = next(iter(vector.values()), [])
            points.append(
                VectorPoint(
                    id=record.id,
                    vector=tuple(float(value) for value in vector or ()),
                    payload=dict(record.payload or {}),
                )
            )
        return tuple(points)

    def count(self, collection: str) -> int:
        try:
            result = self._client.count(collection_name=collection, exact=True)
        except Exception as exc:
            raise self._translate(exc, collection=collection, action="count") from exc
        return int(result.count)

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _check_vector_size(self, name: str, vector_size: int) -> None:
        try:
            info = self._client.get_collection(collection_name=name)
        except Exception as exc:
            raise self._translate(exc, collection=name, action="describe") from exc

        params = info.config.params.vectors
        actual = getattr(params, "size", None)
        if actual is not None and actual != vector_size:
            raise VectorStoreCollectionMismatchError(
                (
                    f"Collection {name!r} stores {actual}-dimensional vectors, "
                    f"expected {vector_size}."
                ),
                collection=name,
                expected=vector_size,
                actual=actual,
            )

    def _translate(
        self,
        exc: Exception,
        *,
        collection: str,
        action: str,
    ) -> VectorStoreError:
        status = _status_code(exc)
        self._logger.error(
            "qdrant-request-failed",
            collection=collection,
            action=action,
            status_code=status,
            error_type=exc.__class__.__name__,
        )
        detail = str(exc) or exc.__class__.__name__
        return VectorStoreRequestError(
            f"Qdrant {action} failed for {collection!r}: {detail}",
            collection=collection,
            status_code=status,
        )


def build_qdrant_client(settings: VectorStoreSettings) -> QdrantClient:
    """Return a client for ``settings``; ``:memory:`` selects the local mode."""

    if settings.url == MEMORY_LOCATION:
        return QdrantClient(location=MEMORY_LOCATION)
    return QdrantClient(
        url=settings.url,
        api_key=settings.api_key,
        timeout=settings.timeout,
    )
