"""Chunk source consumed by index builds."""

from __future__ import annotations

from .models import Chunk, ChunkKey
from .source import ChunkSource, SqliteChunkSource

__all__ = [
    "Chunk",
    "ChunkKey",
    "ChunkSource",
    "SqliteChunkSource",
]
