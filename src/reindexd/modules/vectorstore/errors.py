"""Typed error hierarchy for the vector store adapter."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "VectorStoreError",
    "VectorStoreRequestError",
    "VectorStoreCollectionMismatchError",
]


@dataclass(slots=True)
class VectorStoreError(RuntimeError):
    """Base error raised by the vector store adapter."""

    message: str
    collection: str
    status_code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class VectorStoreRequestError(VectorStoreError):
    """Raised when a store request fails or is not acknowledged."""


@dataclass(slots=True)
class VectorStoreCollectionMismatchError(VectorStoreError):
    """Raised when an existing collection has a different vector size."""

    expected: int | None = None
    actual: int | None = None
