"""Typed representation of the build ledger row."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Mapping

from reindexd.modules.chunks import ChunkKey

__all__ = [
    "BuildLedger",
    "BuildStatus",
]


class BuildStatus(StrEnum):
    """Lifecycle of an index build."""

    BUILDING = "building"
    READY = "ready"
    FAILED = "failed"


def _parse_datetime(value: Any, *, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{field} cannot be empty")
        if stripped.endswith("Z"):
            stripped = f"{stripped[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(stripped)
        except ValueError as exc:
            message = f"{field} must be ISO-8601 (got {value!r})"
            raise ValueError(message) from exc
    else:
        raise TypeError(
            f"{field} must be ISO-8601 string or datetime; got {type(value)!r}"
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_optional_datetime(value: Any, *, field: str) -> datetime | None:
    if value is None:
        return None
    return _parse_datetime(value, field=field)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class BuildLedger:
    """Durable progress record for one ``(namespace, collection)`` build."""

    id: int
    namespace: str
    collection: str
    embedding_model_id: str
    embedding_dim: int
    embedding_provider: str
    status: BuildStatus
    is_active: bool
    chunks_total: int
    chunks_done: int
    cursor: ChunkKey | None
    error_message: str | None
    built_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BuildLedger":
        """Hydrate a ledger from a ``build_ledgers`` row (``sqlite3.Row`` ok)."""

        data = {key: row[key] for key in row.keys()}
        return cls(
            id=int(data["id"]),
            namespace=str(data["namespace"]),
            collection=str(data["collection"]),
            embedding_model_id=str(data["embedding_model_id"]),
            embedding_dim=int(data["embedding_dim"]),
            embedding_provider=str(data["embedding_provider"]),
            status=BuildStatus(data["status"]),
            is_active=bool(data["is_active"]),
            chunks_total=int(data["chunks_total"]),
            chunks_done=int(data["chunks_done"]),
            cursor=ChunkKey.from_row(data),
            error_message=data.get("error_message"),
            built_at=_parse_optional_datetime(
                data.get("built_at"), field="built_at"
            ),
            created_at=_parse_datetime(data["created_at"], field="created_at"),
            updated_at=_parse_datetime(data["updated_at"], field="updated_at"),
        )

    @property
    def is_ready(self) -> bool:
        return self.status is BuildStatus.READY

    @property
    def progress(self) -> float:
        """Fraction of the snapshot processed, in ``[0.0, 1.0]``."""

        if self.chunks_total <= 0:
            return 1.0 if self.status is BuildStatus.READY else 0.0
        return min(1.0, self.chunks_done / self.chunks_total)

    def to_mapping(self) -> dict[str, Any]:
        """Return a JSON-friendly mapping of the observable build state."""

        return {
            "id": self.id,
            "namespace": self.namespace,
            "collection": self.collection,
            "embedding_model_id": self.embedding_model_id,
            "embedding_dim": self.embedding_dim,
            "embedding_provider": self.embedding_provider,
            "status": self.status.value,
            "is_active": self.is_active,
            "chunks_total": self.chunks_total,
            "chunks_done": self.chunks_done,
            "cursor": self.cursor.to_mapping() if self.cursor else None,
            "error_message": self.error_message,
            "built_at": _isoformat(self.built_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
