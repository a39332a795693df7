"""Typed records read from the chunk store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

__all__ = [
    "Chunk",
    "ChunkKey",
]


@dataclass(frozen=True, slots=True, order=True)
class ChunkKey:
    """Composite position ``(source_id, chunk_index, chunk_id)``.

    Field order defines the comparison order, which matches the SQL
    ``ORDER BY source_id, chunk_index, id`` used by the chunk source.
    """

    source_id: str
    chunk_index: int
    chunk_id: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ChunkKey | None":
        """Return the cursor stored in a ledger row, or ``None`` if unset."""

        source_id = row.get("cursor_source_id")
        chunk_index = row.get("cursor_chunk_index")
        chunk_id = row.get("cursor_chunk_id")
        if source_id is None and chunk_index is None and chunk_id is None:
            return None
        if source_id is None or chunk_index is None or chunk_id is None:
            raise ValueError(
                "Ledger cursor columns must be all set or all null "
                f"(got {source_id!r}, {chunk_index!r}, {chunk_id!r})"
            )
        return cls(
            source_id=str(source_id),
            chunk_index=int(chunk_index),
            chunk_id=str(chunk_id),
        )

    def as_params(self) -> tuple[str, int, str]:
        return (self.source_id, self.chunk_index, self.chunk_id)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "chunk_index": self.chunk_index,
            "chunk_id": self.chunk_id,
        }


@dataclass(frozen=True, slots=True)
class Chunk:
    """Immutable text chunk belonging to a source document."""

    id: str
    namespace: str
    source_id: str
    chunk_index: int
    text: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Chunk":
        return cls(
            id=str(row["id"]),
            namespace=str(row["namespace"]),
            source_id=str(row["source_id"]),
            chunk_index=int(row["chunk_index"]),
            text=row["text"] or "",
        )

    @property
    def key(self) -> ChunkKey:
        return ChunkKey(
            source_id=self.source_id,
            chunk_index=self.chunk_index,
            chunk_id=self.id,
        )
